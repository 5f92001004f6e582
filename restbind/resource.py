"""
ResourceBinder: REST handlers generated from a Model handle.

Given a Model handle and ResourceOptions, a binder builds FastAPI
endpoints for list, detail, insert, update and remove, and can register
all five on a router:

    items = ResourceBinder(InMemoryModel("items", schema=Item))
    items.events.on("insert", audit_insert)
    items.serve("/items", app)

    GET    /items        -> query()
    GET    /items/{id}   -> detail()
    POST   /items        -> insert()
    PATCH  /items/{id}   -> update()
    DELETE /items/{id}   -> remove()

Each handler prepares a query from the request and runs a fixed pipeline
of steps (see restbind.pipeline.steps). Errors that are RestBindErrors
are answered with their status and body; everything else propagates to
the application's exception handlers.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Mapping

from fastapi import APIRouter, FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .errors import InvalidContentError, InvalidQueryError, RestBindError
from .events import ResourceEvents
from .options import (
    OperationOptions,
    PopulateDirective,
    ResourceOptions,
    ServeOptions,
)
from .pagination import PageWindow, parse_page
from .pipeline import (
    ApplyBody,
    ApplyPageLinks,
    EmitAfterResponse,
    EmitEvent,
    ExecuteQuery,
    Pipeline,
    PipelineBuilder,
    ProjectEach,
    ProjectOne,
    RemoveEntity,
    RequestContext,
    RequireEntity,
    RunBeforeSaves,
    SaveEntity,
    SendData,
    SetLocationHeader,
    call_hook,
    encode_body,
)
from .pipeline.context import header_carrier
from .query import parse_filter, parse_select, parse_sort

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Response]]


def error_response(exc: RestBindError) -> JSONResponse:
    """Render a RestBindError as its JSON response."""
    return JSONResponse(status_code=exc.http_status, content=encode_body(exc.to_response()))


class ResourceBinder:
    """
    Binds a Model handle to REST handlers.

    Configuration is fixed at construction; handler factories accept
    OperationOptions to override it per route. Listeners must be
    registered on ``events`` before serve() is called.

    Args:
        model: Model handle (see restbind.store.base.Model)
        options: ResourceOptions, or a mapping of its fields
    """

    def __init__(
        self,
        model: Any,
        options: ResourceOptions | Mapping[str, Any] | None = None,
    ):
        if model is None:
            raise ValueError("Model argument is required")
        self.model = model
        self.options = ResourceOptions.coerce(options)
        self.events = ResourceEvents()

    @property
    def name(self) -> str:
        return getattr(self.model, "name", type(self.model).__name__)

    @property
    def id_field(self) -> str:
        return getattr(self.model, "id_field", "_id")

    def on(self, event: str, listener: Callable[[Any], Any]) -> Callable[[Any], Any]:
        """Shortcut for ``events.on``."""
        return self.events.on(event, listener)

    # =========================================================================
    # Handler factories
    # =========================================================================

    def query(self, options: OperationOptions | Mapping[str, Any] | None = None) -> Handler:
        """
        Build the list handler.

        Query-string parameters:
            q: JSON filter (see restbind.query)
            p: zero-based page number
            sort: field paths, ``-`` prefix for descending
            select: field paths to include, or ``-`` prefixed to exclude
        """
        op = OperationOptions.coerce(options)
        page_size = op.page_size or self.options.page_size
        base_url = op.base_url if op.base_url is not None else self.options.base_url
        projection = op.projection or self.options.list_projection
        populates = self._populates(op)
        status_code = op.status_code or 200

        async def query_handler(request: Request, response: Response = None) -> Response:
            ctx = self._context(request, response, "query")
            params = request.query_params

            try:
                predicate = parse_filter(params["q"]) if params.get("q") else None
                sort = parse_sort(params["sort"]) if params.get("sort") else None
                select = parse_select(params["select"]) if params.get("select") else None
            except InvalidQueryError as e:
                logger.warning(f"Rejected {e.parameter} on {request.url.path}: {e.errors}")
                return error_response(e)

            query = self.model.find({})
            if predicate:
                query = query.where(predicate)
            query = _apply_populates(query, populates)
            if sort:
                query = query.sort(sort)
            if select:
                query = query.select(select)

            try:
                query = await self._apply_filter(query, request, ctx.response)
            except RestBindError as e:
                return error_response(e)

            ctx.page = parse_page(params.get("p"), page_size)
            window = PageWindow(page=ctx.page, page_size=page_size)
            query = query.skip(window.skip)
            query = query.limit(window.limit)

            pipeline = (
                PipelineBuilder()
                .add(ExecuteQuery(query))
                .add(ApplyPageLinks(ctx.page, page_size, base_url))
                .add(ProjectEach(projection))
                .add(EmitEvent(self.events, "query"))
                .add(SendData(status_code))
                .build()
            )
            return await self._respond(pipeline, ctx)

        return query_handler

    def detail(self, options: OperationOptions | Mapping[str, Any] | None = None) -> Handler:
        """Build the fetch-by-id handler. Honors ``select``."""
        op = OperationOptions.coerce(options)
        projection = op.projection or self.options.detail_projection
        populates = self._populates(op)
        status_code = op.status_code or 200

        async def detail_handler(request: Request, response: Response = None) -> Response:
            ctx = self._context(request, response, "detail")

            try:
                select = (
                    parse_select(request.query_params["select"])
                    if request.query_params.get("select")
                    else None
                )
                query = await self._find_by_id(ctx)
            except RestBindError as e:
                return error_response(e)

            query = _apply_populates(query, populates)
            if select:
                query = query.select(select)

            pipeline = (
                PipelineBuilder()
                .add(ExecuteQuery(query))
                .add(ProjectOne(projection))
                .add(EmitEvent(self.events, "detail"))
                .add(SendData(status_code))
                .build()
            )
            return await self._respond(pipeline, ctx)

        return detail_handler

    def insert(self, options: OperationOptions | Mapping[str, Any] | None = None) -> Handler:
        """Build the create handler."""
        op = OperationOptions.coerce(options)
        projection = op.projection or self.options.insert_projection
        hooks = self._before_saves(op)
        status_code = op.status_code or 200

        async def insert_handler(request: Request, response: Response = None) -> Response:
            ctx = self._context(request, response, "insert")

            try:
                body = await _read_body(request)
            except RestBindError as e:
                return error_response(e)

            entity = self.model.new(body or {})

            pipeline = (
                PipelineBuilder()
                .add_if(bool(hooks), RunBeforeSaves(hooks))
                .add(SaveEntity())
                .add(SetLocationHeader(append_id=True))
                .add(ProjectOne(projection))
                .add(EmitEvent(self.events, "insert"))
                .add(SendData(status_code))
                .build()
            )
            return await self._respond(pipeline, ctx, entity)

        return insert_handler

    def update(self, options: OperationOptions | Mapping[str, Any] | None = None) -> Handler:
        """
        Build the partial-update handler.

        The Location header is the request path itself, which already ends
        with the entity id.
        """
        op = OperationOptions.coerce(options)
        projection = op.projection or self.options.update_projection
        hooks = self._before_saves(op)
        status_code = op.status_code or 200

        async def update_handler(request: Request, response: Response = None) -> Response:
            ctx = self._context(request, response, "update")

            try:
                query = await self._find_by_id(ctx)
                body = await _read_body(request)
            except RestBindError as e:
                return error_response(e)

            pipeline = (
                PipelineBuilder()
                .add(ExecuteQuery(query))
                .add(RequireEntity())
                .add(ApplyBody(body))
                .add_if(bool(hooks), RunBeforeSaves(hooks))
                .add(SaveEntity())
                .add(SetLocationHeader(append_id=False))
                .add(ProjectOne(projection))
                .add(EmitEvent(self.events, "update"))
                .add(SendData(status_code))
                .build()
            )
            return await self._respond(pipeline, ctx)

        return update_handler

    def remove(self) -> Handler:
        """
        Build the delete handler.

        Responds with the deleted entity's last known state; the
        ``remove`` event is emitted after the response is sent.
        """

        async def remove_handler(request: Request, response: Response = None) -> Response:
            ctx = self._context(request, response, "remove")

            try:
                query = await self._find_by_id(ctx)
            except RestBindError as e:
                return error_response(e)

            pipeline = (
                PipelineBuilder()
                .add(ExecuteQuery(query))
                .add(RequireEntity())
                .add(RemoveEntity())
                .add(SendData(200))
                .add(EmitAfterResponse(self.events, "remove"))
                .build()
            )
            return await self._respond(pipeline, ctx)

        return remove_handler

    # =========================================================================
    # Route registration
    # =========================================================================

    def serve(
        self,
        path: str,
        server: APIRouter | FastAPI,
        options: ServeOptions | Mapping[str, Any] | None = None,
    ) -> None:
        """
        Register the five handlers on ``server``.

        ``path`` serves list and insert; ``path/{id}`` serves detail,
        update and remove. ``before`` middleware runs ahead of every
        handler. ``after`` middleware is never reached: each handler
        ends the request with its response.

        Freezes the event registry.
        """
        serve_options = ServeOptions.coerce(options)
        if serve_options.after:
            logger.warning(
                f"Resource '{self.name}' at {path}: {len(serve_options.after)} 'after' "
                f"middleware registered but handlers end the request, so they will not run"
            )

        collection_path = path if path == "/" else path.rstrip("/")
        item_path = f"{collection_path.rstrip('/')}/{{id}}"
        before = serve_options.before

        routes = [
            (collection_path, "GET", self.query(), "query"),
            (item_path, "GET", self.detail(), "detail"),
            (collection_path, "POST", self.insert(), "insert"),
            (item_path, "DELETE", self.remove(), "remove"),
            (item_path, "PATCH", self.update(), "update"),
        ]
        for route_path, method, handler, operation in routes:
            server.add_api_route(
                route_path,
                _chain(handler, before),
                methods=[method],
                name=f"{self.name}_{operation}",
                response_class=JSONResponse,
            )

        self.events.freeze()
        logger.info(f"Serving resource '{self.name}' at {collection_path} and {item_path}")

    # =========================================================================
    # Internals
    # =========================================================================

    def _context(self, request: Request, response: Response | None, operation: str) -> RequestContext:
        ctx = RequestContext(request=request, operation=operation)
        if response is not None:
            ctx.response = response
        ctx.resource_id = request.path_params.get("id")
        return ctx

    def _populates(self, op: OperationOptions) -> dict[str, PopulateDirective] | None:
        return op.populates if op.populates is not None else self.options.populates

    def _before_saves(self, op: OperationOptions) -> list[Callable[..., Any]]:
        hooks = []
        if self.options.before_save:
            hooks.append(self.options.before_save)
        if op.before_save:
            hooks.append(op.before_save)
        return hooks

    async def _apply_filter(self, query: Any, request: Request, response: Response) -> Any:
        if self.options.filter is None:
            return query
        predicate = await call_hook(self.options.filter, request, response)
        if predicate:
            query = query.where(predicate)
        return query

    async def _find_by_id(self, ctx: RequestContext) -> Any:
        if ctx.request is None:
            raise RuntimeError("Cannot look up an entity without a request")
        query = self.model.find_one({self.id_field: ctx.resource_id})
        return await self._apply_filter(query, ctx.request, ctx.response)

    async def _respond(self, pipeline: Pipeline, ctx: RequestContext, initial: Any = None) -> Response:
        try:
            await pipeline.run(initial, ctx)
        except RestBindError as e:
            return error_response(e)
        if ctx.reply is None:
            raise RuntimeError(f"Pipeline for '{ctx.operation}' finished without a response")
        return ctx.reply

    def __repr__(self) -> str:
        return f"ResourceBinder(model={self.name!r}, page_size={self.options.page_size})"


def _apply_populates(query: Any, populates: dict[str, PopulateDirective] | None) -> Any:
    for path, directive in (populates or {}).items():
        query = query.populate(path, directive.select, directive.model, directive.match)
    return query


async def _read_body(request: Request) -> dict[str, Any] | None:
    """Decode the JSON body. An empty body is None."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise InvalidContentError(f"Body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise InvalidContentError("Body must be a JSON object")
    return body


def _chain(handler: Handler, before: list[Callable[..., Any]]) -> Callable[[Request], Awaitable[Response]]:
    """Run ``before`` middleware, then the handler, sharing one response carrier."""

    async def endpoint(request: Request) -> Response:
        carrier = header_carrier()
        try:
            for middleware in before:
                await call_hook(middleware, request, carrier)
        except RestBindError as e:
            return error_response(e)
        return await handler(request, carrier)

    endpoint.__name__ = getattr(handler, "__name__", "endpoint")
    return endpoint


def create_resource(
    model: Any,
    options: ResourceOptions | Mapping[str, Any] | None = None,
) -> ResourceBinder:
    """Create a ResourceBinder; ``model`` is required."""
    return ResourceBinder(model, options)


__all__ = ["Handler", "ResourceBinder", "create_resource", "error_response"]
