"""
Request Context for restbind.

The context provides request-scoped state to every step of a handler
pipeline: the incoming request, a response carrier for headers set along
the way, and an audit trail of step timings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.requests import Request


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def header_carrier() -> Response:
    # Same trick FastAPI uses for injected sub-responses: an empty Response
    # whose headers are merged into the final one.
    response = Response()
    del response.headers["content-length"]
    return response


@dataclass
class RequestContext:
    """
    Request-scoped context passed through a handler pipeline.

    Provides:
    - Unique execution ID for tracing
    - The incoming request and a response header carrier
    - Resolved routing values (resource id, page number)
    - Audit trail of step processing

    The final HTTP response is stored in ``reply`` by the send step.
    """

    # Execution identification
    execution_id: UUID = field(default_factory=uuid4)
    started_at: datetime = field(default_factory=_utc_now)

    # HTTP exchange
    request: Request | None = None
    response: Response = field(default_factory=header_carrier)
    reply: Response | None = None

    # Routing values
    operation: str = ""
    resource_id: str | None = None
    page: int = 0

    # Audit trail
    step_timings: dict[str, float] = field(default_factory=dict)
    step_log: list[dict[str, Any]] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the pipeline started."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    @property
    def short_id(self) -> str:
        return str(self.execution_id)[:8]

    def record_step(self, step_name: str, value: Any) -> None:
        """Record a step entry in the audit trail."""
        self.step_log.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "step": step_name,
            "value_type": type(value).__name__,
            "elapsed_ms": self.elapsed_ms,
        })

    def record_timing(self, step_name: str, duration_ms: float) -> None:
        """Record step execution timing."""
        self.step_timings[step_name] = duration_ms

    def to_audit_dict(self) -> dict[str, Any]:
        """Generate an audit record for logging."""
        return {
            "execution_id": str(self.execution_id),
            "operation": self.operation,
            "method": self.request.method if self.request is not None else None,
            "path": self.request.url.path if self.request is not None else None,
            "resource_id": self.resource_id,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.elapsed_ms,
            "step_timings": self.step_timings,
            "step_count": len(self.step_log),
        }


@dataclass
class PipelineResult:
    """
    Result of pipeline execution.

    Holds the final value on success, or the first error raised and the
    name of the step that raised it.
    """

    context: RequestContext
    value: Any = None
    success: bool = True
    error: BaseException | None = None
    failed_step: str | None = None

    @property
    def execution_id(self) -> UUID:
        return self.context.execution_id

    @property
    def duration_ms(self) -> float:
        return self.context.elapsed_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize result for logging."""
        return {
            "execution_id": str(self.execution_id),
            "success": self.success,
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error is not None else None,
            "failed_step": self.failed_step,
        }
