"""
Pipeline Executor for restbind.

The Pipeline runs an ordered sequence of steps as a waterfall: each
step's output feeds the next, and the first error short-circuits the
rest.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from .context import PipelineResult, RequestContext

if TYPE_CHECKING:
    from .step import Step

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Pipeline orchestrates sequential value processing.

    Execution Model:
    - Steps run strictly in declaration order
    - Each step receives the previous step's return value
    - The first exception stops the pipeline; later steps never run
    - Errors are reported in PipelineResult, and re-raised by run()

    Example:
        pipeline = Pipeline([
            ExecuteQuery(query),
            ApplyPageLinks(page=0, page_size=100),
            ProjectEach(projection),
            EmitEvent(events, "query"),
            SendData(),
        ])

        value = await pipeline.run(ctx=RequestContext(request=request))
    """

    def __init__(self, steps: list["Step"]):
        """
        Initialize pipeline with ordered list of steps.

        Args:
            steps: List of steps in execution order
        """
        if not steps:
            raise ValueError("Pipeline must have at least one step")
        self.steps = steps

    @property
    def step_names(self) -> list[str]:
        """Get names of all steps in order."""
        return [s.name for s in self.steps]

    async def execute(
        self,
        initial: Any = None,
        ctx: RequestContext | None = None,
    ) -> PipelineResult:
        """
        Execute the pipeline on an initial value.

        Args:
            initial: Value handed to the first step
            ctx: Request context (created if not provided)

        Returns:
            PipelineResult with the final value or the first error
        """
        if ctx is None:
            ctx = RequestContext()

        logger.debug(
            f"Pipeline starting: execution_id={ctx.short_id}..., "
            f"operation={ctx.operation or '-'}, steps={self.step_names}"
        )

        result = PipelineResult(context=ctx)
        value = initial

        for step in self.steps:
            ctx.record_step(step.name, value)
            start_time = time.perf_counter()

            try:
                value = await step.process(value, ctx)
            except Exception as e:
                log = logger.warning if _is_client_error(e) else logger.error
                log(
                    f"Step '{step.name}' failed: execution_id={ctx.short_id}..., "
                    f"{type(e).__name__}: {e}",
                    exc_info=not _is_client_error(e),
                )
                result.success = False
                result.error = e
                result.failed_step = step.name
                logger.debug(f"Pipeline result: {result.to_dict()}")
                return result
            finally:
                duration_ms = (time.perf_counter() - start_time) * 1000
                ctx.record_timing(step.name, duration_ms)

            logger.debug(f"Step '{step.name}': time={ctx.step_timings[step.name]:.1f}ms")

        result.value = value

        logger.info(
            f"Pipeline complete: execution_id={ctx.short_id}..., "
            f"operation={ctx.operation or '-'}, duration={ctx.elapsed_ms:.1f}ms"
        )
        logger.debug(f"Pipeline audit: {ctx.to_audit_dict()}")

        return result

    async def run(
        self,
        initial: Any = None,
        ctx: RequestContext | None = None,
    ) -> Any:
        """Execute the pipeline and return its value, re-raising the first error."""
        result = await self.execute(initial, ctx)
        if not result.success:
            if result.error is None:
                raise RuntimeError(f"Step '{result.failed_step}' failed without an error")
            raise result.error
        return result.value

    def __repr__(self) -> str:
        return f"Pipeline(steps={self.step_names})"


def _is_client_error(exc: BaseException) -> bool:
    status = getattr(exc, "http_status", 500)
    return isinstance(status, int) and status < 500


class PipelineBuilder:
    """
    Builder for constructing pipelines with fluent API.

    Example:
        pipeline = (
            PipelineBuilder()
            .add(ExecuteQuery(query))
            .add(ProjectOne(projection))
            .build()
        )
    """

    def __init__(self) -> None:
        self._steps: list["Step"] = []

    def add(self, step: "Step") -> "PipelineBuilder":
        """Add a step to the pipeline."""
        self._steps.append(step)
        return self

    def add_if(self, condition: bool, step: "Step") -> "PipelineBuilder":
        """Conditionally add a step."""
        if condition:
            self._steps.append(step)
        return self

    def build(self) -> Pipeline:
        """Build and return the pipeline."""
        return Pipeline(self._steps)
