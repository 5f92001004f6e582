"""
restbind pipeline

Each resource handler is a Pipeline: an ordered list of Steps run as a
waterfall over a request-scoped RequestContext.

Core Components:
- Step: Single-responsibility transformer, process(value, ctx) -> value
- Pipeline: Sequential executor, first error short-circuits
- PipelineBuilder: Fluent construction
- RequestContext: Request-scoped state, response header carrier, timings
- steps: The concrete steps the resource handlers are built from
"""

from .context import PipelineResult, RequestContext
from .executor import Pipeline, PipelineBuilder
from .step import Step, call_hook
from .steps import (
    ApplyBody,
    ApplyPageLinks,
    EmitAfterResponse,
    EmitEvent,
    ExecuteQuery,
    ProjectEach,
    ProjectOne,
    RemoveEntity,
    RequireEntity,
    RunBeforeSaves,
    SaveEntity,
    SendData,
    SetLocationHeader,
    encode_body,
)

__all__ = [
    # Core
    "Pipeline",
    "PipelineBuilder",
    "PipelineResult",
    "RequestContext",
    "Step",
    "call_hook",
    # Steps
    "ExecuteQuery",
    "RequireEntity",
    "ApplyBody",
    "RunBeforeSaves",
    "SaveEntity",
    "RemoveEntity",
    "ApplyPageLinks",
    "SetLocationHeader",
    "ProjectEach",
    "ProjectOne",
    "EmitEvent",
    "SendData",
    "EmitAfterResponse",
    "encode_body",
]
