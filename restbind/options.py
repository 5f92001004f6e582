"""
Resource configuration.

ResourceOptions is set once per binder; OperationOptions overrides it
for a single handler factory call. Unset operation fields fall back to
the binder-level value.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from .store.base import PopulateDirective

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from .config.schemas import AppSettings

# (request, item) -> item
Projection = Callable[["Request", Any], Any]
# (request, response) -> predicate
FilterFn = Callable[["Request", "Response"], "dict[str, Any] | Awaitable[dict[str, Any]]"]
# (request, entity) -> None
BeforeSave = Callable[["Request", Any], "Awaitable[None] | None"]
# (request, response) -> None
Middleware = Callable[["Request", "Response"], "Awaitable[None] | None"]

DEFAULT_PAGE_SIZE = 100


def identity_projection(request: Request, item: Any) -> Any:
    """Default projection: the entity as stored."""
    return item


def _coerce_populates(
    populates: Mapping[str, PopulateDirective | Mapping[str, Any] | None] | None,
) -> dict[str, PopulateDirective] | None:
    if populates is None:
        return None
    coerced: dict[str, PopulateDirective] = {}
    for path, directive in populates.items():
        if directive is None:
            coerced[path] = PopulateDirective()
        elif isinstance(directive, PopulateDirective):
            coerced[path] = directive
        else:
            coerced[path] = PopulateDirective(**directive)
    return coerced


def _from_mapping(cls: type, data: Mapping[str, Any]) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise TypeError(f"Unknown {cls.__name__} fields: {sorted(unknown)}")
    return cls(**data)


@dataclass(frozen=True)
class ResourceOptions:
    """
    Binder-level configuration.

    Attributes:
        page_size: Records per list page
        base_url: Prefix for hrefs in the Link header
        list_projection, detail_projection, update_projection,
        insert_projection: Transform entities before they are sent
        filter: Extra predicate computed from the request, applied to
            every list, detail, update and remove query
        before_save: Hook run before insert/update persistence
        populates: Reference expansion rules keyed by reference path
    """

    page_size: int = DEFAULT_PAGE_SIZE
    base_url: str = ""
    list_projection: Projection = identity_projection
    detail_projection: Projection = identity_projection
    update_projection: Projection = identity_projection
    insert_projection: Projection = identity_projection
    filter: FilterFn | None = None
    before_save: BeforeSave | None = None
    populates: dict[str, PopulateDirective] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.page_size, bool) or not isinstance(self.page_size, int) or self.page_size < 1:
            raise ValueError(f"page_size must be a positive integer, got {self.page_size!r}")
        object.__setattr__(self, "base_url", self.base_url or "")
        object.__setattr__(self, "populates", _coerce_populates(self.populates))
        for name in ("list_projection", "detail_projection", "update_projection", "insert_projection"):
            if getattr(self, name) is None:
                object.__setattr__(self, name, identity_projection)

    @classmethod
    def coerce(cls, value: "ResourceOptions | Mapping[str, Any] | None") -> "ResourceOptions":
        """Accept an instance, a mapping of fields, or None for defaults."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return _from_mapping(cls, value)

    @classmethod
    def from_settings(cls, settings: "AppSettings", **overrides: Any) -> "ResourceOptions":
        """Defaults for page_size/base_url taken from application settings."""
        values: dict[str, Any] = {
            "page_size": settings.page_size,
            "base_url": settings.base_url,
        }
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes: Any) -> "ResourceOptions":
        return replace(self, **changes)


@dataclass(frozen=True)
class OperationOptions:
    """
    Per-handler overrides.

    Attributes:
        page_size, base_url: List pagination overrides
        projection: Replaces the binder projection for this operation
        before_save: Runs after the binder-level hook (insert/update)
        populates: Reference expansion rules for this operation
        status_code: Response status on success (default 200)
    """

    page_size: int | None = None
    base_url: str | None = None
    projection: Projection | None = None
    before_save: BeforeSave | None = None
    populates: dict[str, PopulateDirective] | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        if self.page_size is not None and (
            isinstance(self.page_size, bool) or not isinstance(self.page_size, int) or self.page_size < 1
        ):
            raise ValueError(f"page_size must be a positive integer, got {self.page_size!r}")
        object.__setattr__(self, "populates", _coerce_populates(self.populates))

    @classmethod
    def coerce(cls, value: "OperationOptions | Mapping[str, Any] | None") -> "OperationOptions":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return _from_mapping(cls, value)


@dataclass(frozen=True)
class ServeOptions:
    """
    Route registration options.

    Attributes:
        before: Middleware run in order before every handler; raising
            aborts the request
        after: Accepted for compatibility but never run, because every
            handler ends the request by returning its response
    """

    before: list[Middleware] = field(default_factory=list)
    after: list[Middleware] = field(default_factory=list)

    def __post_init__(self) -> None:
        object.__setattr__(self, "before", _as_list(self.before))
        object.__setattr__(self, "after", _as_list(self.after))

    @classmethod
    def coerce(cls, value: "ServeOptions | Mapping[str, Any] | None") -> "ServeOptions":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return _from_mapping(cls, value)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if callable(value):
        return [value]
    return list(value)


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "Projection",
    "FilterFn",
    "BeforeSave",
    "Middleware",
    "PopulateDirective",
    "identity_projection",
    "ResourceOptions",
    "OperationOptions",
    "ServeOptions",
]
