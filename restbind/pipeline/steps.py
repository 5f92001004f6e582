"""
Steps used by the resource handler pipelines.

Every handler is a fixed sequence of these steps:

    query:  ExecuteQuery -> ApplyPageLinks -> ProjectEach -> EmitEvent -> SendData
    detail: ExecuteQuery -> ProjectOne -> EmitEvent -> SendData
    insert: RunBeforeSaves -> SaveEntity -> SetLocationHeader -> ProjectOne
            -> EmitEvent -> SendData
    update: ExecuteQuery -> RequireEntity -> ApplyBody -> RunBeforeSaves
            -> SaveEntity -> SetLocationHeader -> ProjectOne -> EmitEvent -> SendData
    remove: ExecuteQuery -> RequireEntity -> RemoveEntity -> SendData
            -> EmitAfterResponse
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Sequence

from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from starlette.background import BackgroundTask
from starlette.responses import JSONResponse

from ..errors import InvalidContentError, ResourceNotFoundError, translate_error
from ..pagination import format_link_header, page_links
from .step import Step, call_hook

if TYPE_CHECKING:
    from ..events import ResourceEvents
    from ..options import BeforeSave, Projection
    from ..store.base import Query
    from .context import RequestContext

logger = logging.getLogger(__name__)


def encode_body(value: Any) -> Any:
    """Make a step value JSON-serializable (entities, ObjectIds, pydantic models)."""
    if isinstance(value, (list, tuple)):
        return [encode_body(item) for item in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        value = to_dict()
    return jsonable_encoder(value, custom_encoder={ObjectId: str})


def _request(ctx: RequestContext) -> Any:
    if ctx.request is None:
        raise RuntimeError("Resource steps require ctx.request")
    return ctx.request


# =============================================================================
# Store access
# =============================================================================


class ExecuteQuery(Step):
    """Run the prepared query; the step's input is ignored."""

    def __init__(self, query: "Query"):
        self.query = query

    @property
    def name(self) -> str:
        return "exec_query"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        return await self.query.exec()


class RequireEntity(Step):
    """Fail with ResourceNotFoundError when the query found nothing."""

    @property
    def name(self) -> str:
        return "require_entity"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        if value is None:
            raise ResourceNotFoundError(ctx.resource_id)
        return value


class ApplyBody(Step):
    """Apply the request body onto the found entity."""

    def __init__(self, body: Any):
        self.body = body

    @property
    def name(self) -> str:
        return "apply_body"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        if not self.body:
            raise InvalidContentError("No update data sent")
        if not isinstance(self.body, dict):
            raise InvalidContentError("Update data must be a JSON object")
        value.set(self.body)
        return value


class RunBeforeSaves(Step):
    """Run before-save hooks in series; the first error aborts."""

    def __init__(self, hooks: Sequence["BeforeSave"]):
        self.hooks = list(hooks)

    @property
    def name(self) -> str:
        return "before_save"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        request = _request(ctx)
        for hook in self.hooks:
            await call_hook(hook, request, value)
        return value


class SaveEntity(Step):
    """Persist the entity, translating validation failures into client errors."""

    @property
    def name(self) -> str:
        return "save"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        try:
            return await value.save()
        except Exception as e:
            translated = translate_error(e)
            if translated is e:
                raise
            raise translated from e


class RemoveEntity(Step):
    """Delete the entity; errors propagate unchanged."""

    @property
    def name(self) -> str:
        return "remove"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        await value.remove()
        return value


# =============================================================================
# Headers
# =============================================================================


class ApplyPageLinks(Step):
    """
    Set the Link header and trim the look-ahead record.

    The list query fetched ``page_size + 1`` records; a surplus record
    means another page exists and is dropped before projection.
    """

    def __init__(self, page: int, page_size: int, base_url: str = ""):
        self.page = page
        self.page_size = page_size
        self.base_url = base_url

    @property
    def name(self) -> str:
        return "page_links"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        request = _request(ctx)
        items = list(value)
        has_next = len(items) > self.page_size
        if has_next:
            items = items[: self.page_size]

        links = page_links(
            request.url.path,
            request.query_params.multi_items(),
            self.page,
            has_next,
            self.base_url,
        )
        ctx.response.headers["Link"] = format_link_header(links)
        return items


class SetLocationHeader(Step):
    """
    Point the Location header at the saved entity.

    Inserts append the new id to the request path; updates are already
    addressed by id, so the request path is used as is.
    """

    def __init__(self, append_id: bool = True):
        self.append_id = append_id

    @property
    def name(self) -> str:
        return "location"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        path = _request(ctx).url.path
        if self.append_id:
            path = f"{path.rstrip('/')}/{value.id}"
        ctx.response.headers["Location"] = path
        return value


# =============================================================================
# Projection
# =============================================================================


class ProjectEach(Step):
    """
    Project every item of a list.

    Projections run concurrently; output order matches input order and
    the first failure aborts the step.
    """

    def __init__(self, projection: "Projection"):
        self.projection = projection

    @property
    def name(self) -> str:
        return "project_each"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        request = _request(ctx)
        return list(
            await asyncio.gather(*(call_hook(self.projection, request, item) for item in value))
        )


class ProjectOne(Step):
    """Project a single entity; a missing entity is a not-found error."""

    def __init__(self, projection: "Projection"):
        self.projection = projection

    @property
    def name(self) -> str:
        return "project"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        if value is None:
            raise ResourceNotFoundError(ctx.resource_id)
        return await call_hook(self.projection, _request(ctx), value)


# =============================================================================
# Events and response
# =============================================================================


class EmitEvent(Step):
    """Deliver the current value to the event's listeners."""

    def __init__(self, events: "ResourceEvents", event: str):
        self.events = events
        self.event = event

    @property
    def name(self) -> str:
        return f"emit_{self.event}"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        await self.events.emit(self.event, value)
        return value


class SendData(Step):
    """Write the value as the JSON response, with headers set by earlier steps."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code

    @property
    def name(self) -> str:
        return "send"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        reply = JSONResponse(content=encode_body(value), status_code=self.status_code)
        # Raw extend keeps repeated headers such as Set-Cookie.
        reply.headers.raw.extend(ctx.response.headers.raw)
        ctx.reply = reply
        return value


class EmitAfterResponse(Step):
    """
    Emit once the response has been sent.

    Listener errors are logged; the response is already on its way.
    """

    def __init__(self, events: "ResourceEvents", event: str):
        self.events = events
        self.event = event

    @property
    def name(self) -> str:
        return f"emit_{self.event}_after_response"

    async def process(self, value: Any, ctx: RequestContext) -> Any:
        if ctx.reply is None:
            raise RuntimeError(f"'{self.name}' must run after the response is built")
        ctx.reply.background = BackgroundTask(self.events.emit_safely, self.event, value)
        return value


__all__ = [
    "encode_body",
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
]
