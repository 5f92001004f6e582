"""
Step abstraction for restbind pipelines.

A step is a single-responsibility transformer: it receives the value
produced by the previous step plus the request context and returns the
value for the next one. Raising aborts the pipeline.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .context import RequestContext

logger = logging.getLogger(__name__)


async def call_hook(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a user hook that may be a plain function or a coroutine function."""
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class Step(ABC):
    """
    Base class for all steps in a restbind pipeline.

    Design Principles:
    - process(value, ctx) -> value, explicit return
    - Errors are raised, never swallowed; the pipeline stops at the first one
    - Steps hold their configuration, the context holds per-request state

    Subclasses must implement:
    - name: Step identifier used in logging and timings
    - process(): The transformation logic
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this step, used in logging and timings."""
        ...

    @abstractmethod
    async def process(self, value: Any, ctx: RequestContext) -> Any:
        """
        Transform the accumulated value.

        Args:
            value: Output of the previous step (None for the first step)
            ctx: Request-scoped context

        Returns:
            The value handed to the next step

        Raises:
            Exception: Aborts the pipeline; surfaced to the caller
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"

