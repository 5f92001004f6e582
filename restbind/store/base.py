"""
Model-handle contract for restbind stores.

A Model handle is what a ResourceBinder is bound to. It hands out
chainable queries and creates entities:

    model.find(predicate)      -> Query (list)
    model.find_one(predicate)  -> Query (single)
    model.new(data)            -> Entity

    query.where(...).sort(...).select(...).skip(n).limit(n)
         .populate(path, select, model, match)
    await query.exec()         -> list[Entity] | Entity | None

    entity.id, entity.set(fields), await entity.save(),
    await entity.remove(), entity.to_dict()

StoreModel/BaseQuery/BaseEntity hold everything that does not depend on
the backing store: builder state, populate resolution, schema validation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, runtime_checkable

from ..query import merge_predicates, parse_select, parse_sort

if TYPE_CHECKING:
    from pydantic import BaseModel as Schema

logger = logging.getLogger(__name__)

_MISSING = object()

M = TypeVar("M", bound="StoreModel")


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class Entity(Protocol):
    """A document instance owned by the store."""

    @property
    def id(self) -> Any: ...

    def set(self, fields: dict[str, Any]) -> None: ...

    async def save(self) -> "Entity": ...

    async def remove(self) -> None: ...

    def to_dict(self) -> dict[str, Any]: ...


@runtime_checkable
class Query(Protocol):
    """Chainable query builder."""

    def where(self, predicate: dict[str, Any]) -> "Query": ...

    def sort(self, spec: Any) -> "Query": ...

    def select(self, spec: Any) -> "Query": ...

    def skip(self, count: int) -> "Query": ...

    def limit(self, count: int) -> "Query": ...

    def populate(
        self,
        path: str,
        select: Any = None,
        model: Any = None,
        match: dict[str, Any] | None = None,
    ) -> "Query": ...

    async def exec(self) -> Any: ...


@runtime_checkable
class Model(Protocol):
    """Handle onto a document collection."""

    def find(self, predicate: dict[str, Any] | None = None) -> Query: ...

    def find_one(self, predicate: dict[str, Any] | None = None) -> Query: ...

    def new(self, data: dict[str, Any] | None = None) -> Entity: ...


# =============================================================================
# Populate
# =============================================================================


@dataclass(frozen=True)
class PopulateDirective:
    """
    Instruction to expand a reference field into the referenced document.

    Attributes:
        select: Projection applied to the referenced documents
        model: Model handle of the referenced collection (defaults to
            the ref registered on the querying model)
        match: Extra predicate the referenced documents must satisfy;
            references that do not match become None (single) or are
            dropped (list)
    """

    select: Any = None
    model: Any = None
    match: dict[str, Any] | None = None


@dataclass(frozen=True)
class _PopulateCall:
    path: str
    select: Any
    model: "StoreModel"
    match: dict[str, Any] | None


def get_path(doc: dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path from a document."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path into a document, creating intermediate objects."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


# =============================================================================
# Base classes
# =============================================================================


class BaseEntity(ABC):
    """
    Common entity behavior: field access, updates, schema validation.

    Subclasses implement persistence (_insert, _replace, _delete).
    """

    def __init__(self, model: "StoreModel", data: dict[str, Any], *, is_new: bool):
        self._model = model
        self._data = dict(data)
        self.is_new = is_new

    @property
    def model(self) -> "StoreModel":
        return self._model

    @property
    def id(self) -> Any:
        return self._data.get(self._model.id_field)

    def get(self, path: str, default: Any = None) -> Any:
        return get_path(self._data, path, default)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def set(self, fields: dict[str, Any]) -> None:
        """Apply ``fields`` onto the entity. The id field is never changed."""
        for key, value in fields.items():
            if key == self._model.id_field:
                continue
            if "." in key:
                set_path(self._data, key, value)
            else:
                self._data[key] = value

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def validate(self) -> dict[str, Any]:
        """
        Validate the document against the model schema.

        Returns the normalized document.

        Raises:
            pydantic.ValidationError: If the document does not fit the schema
        """
        schema = self._model.schema
        if schema is None:
            return dict(self._data)

        id_field = self._model.id_field
        body = {k: v for k, v in self._data.items() if k != id_field}
        validated = schema.model_validate(body).model_dump()
        if id_field in self._data:
            validated[id_field] = self._data[id_field]
        return validated

    async def save(self) -> "BaseEntity":
        """Validate and persist. Inserts new entities, replaces existing ones."""
        document = self.validate()
        if self.is_new:
            document = await self._insert(document)
            self.is_new = False
        else:
            await self._replace(document)
        self._data = document
        logger.debug(f"Saved {self._model.name} {self.id}")
        return self

    async def remove(self) -> None:
        """Delete the entity from the store."""
        await self._delete()
        logger.debug(f"Removed {self._model.name} {self.id}")

    @abstractmethod
    async def _insert(self, document: dict[str, Any]) -> dict[str, Any]:
        """Insert ``document`` and return it with its id set."""
        ...

    @abstractmethod
    async def _replace(self, document: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def _delete(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._model.name}, id={self.id!r})"


class BaseQuery(ABC, Generic[M]):
    """
    Builder state shared by all stores.

    Subclasses implement _fetch(), returning raw documents for the
    current predicate/sort/projection/skip/limit.
    """

    def __init__(self, model: M, predicate: dict[str, Any] | None, *, single: bool):
        self.model = model
        self.predicate: dict[str, Any] = dict(predicate or {})
        self.single = single
        self.sort_spec: list[tuple[str, int]] = []
        self.projection: dict[str, int] | None = None
        self.skip_count = 0
        self.limit_count: int | None = None
        self.populates: list[_PopulateCall] = []

    def where(self, predicate: dict[str, Any] | None) -> "BaseQuery[M]":
        if predicate:
            self.predicate = merge_predicates(self.predicate, predicate)
        return self

    def sort(self, spec: Any) -> "BaseQuery[M]":
        if isinstance(spec, str):
            spec = parse_sort(spec)
        self.sort_spec.extend((field, int(direction)) for field, direction in spec)
        return self

    def select(self, spec: Any) -> "BaseQuery[M]":
        if isinstance(spec, str):
            spec = parse_select(spec)
        self.projection = {**(self.projection or {}), **spec}
        return self

    def skip(self, count: int) -> "BaseQuery[M]":
        self.skip_count = max(int(count), 0)
        return self

    def limit(self, count: int) -> "BaseQuery[M]":
        self.limit_count = max(int(count), 0)
        return self

    def populate(
        self,
        path: str,
        select: Any = None,
        model: Any = None,
        match: dict[str, Any] | None = None,
    ) -> "BaseQuery[M]":
        target = model if model is not None else self.model.refs.get(path)
        if target is None:
            raise ValueError(
                f"Cannot populate '{path}' on {self.model.name}: no model given and no ref registered"
            )
        self.populates.append(_PopulateCall(path=path, select=select, model=target, match=match))
        return self

    async def exec(self) -> Any:
        """Run the query. Returns a list of entities, or one entity/None when single."""
        documents = await self._fetch()
        for call in self.populates:
            await self._populate(documents, call)

        entities = [self.model.wrap(doc) for doc in documents]
        if self.single:
            return entities[0] if entities else None
        return entities

    async def _populate(self, documents: list[dict[str, Any]], call: _PopulateCall) -> None:
        refs: list[Any] = []
        for doc in documents:
            value = get_path(doc, call.path, _MISSING)
            if value is _MISSING or value is None:
                continue
            refs.extend(value if isinstance(value, list) else [value])
        if not refs:
            return

        target = call.model
        related_query = target.find({target.id_field: {"$in": _unique(refs)}})
        if call.match:
            related_query = related_query.where(call.match)
        if call.select is not None:
            related_query = related_query.select(call.select)
        related = await related_query.exec()
        by_id = {str(item.id): item.to_dict() for item in related}

        for doc in documents:
            value = get_path(doc, call.path, _MISSING)
            if value is _MISSING or value is None:
                continue
            if isinstance(value, list):
                set_path(doc, call.path, [by_id[str(v)] for v in value if str(v) in by_id])
            else:
                set_path(doc, call.path, by_id.get(str(value)))

    @abstractmethod
    async def _fetch(self) -> list[dict[str, Any]]:
        ...


class StoreModel(ABC):
    """
    Common Model-handle behavior.

    Attributes:
        name: Collection name, used in logs and errors
        schema: Optional pydantic model validated on save
        id_field: Name of the identifier field
        refs: Default models for populate, keyed by reference path
    """

    def __init__(
        self,
        name: str,
        *,
        schema: type["Schema"] | None = None,
        id_field: str = "_id",
        refs: dict[str, "StoreModel"] | None = None,
    ):
        self.name = name
        self.schema = schema
        self.id_field = id_field
        self.refs: dict[str, StoreModel] = dict(refs or {})

    def find(self, predicate: dict[str, Any] | None = None) -> BaseQuery:
        return self._query(self._coerce_predicate(predicate), single=False)

    def find_one(self, predicate: dict[str, Any] | None = None) -> BaseQuery:
        return self._query(self._coerce_predicate(predicate), single=True).limit(1)

    def find_by_id(self, raw_id: Any) -> BaseQuery:
        return self.find_one({self.id_field: raw_id})

    def coerce_id(self, raw_id: Any) -> Any:
        """Convert an id taken from a URL into the store's id type."""
        return raw_id

    def _coerce_predicate(self, predicate: dict[str, Any] | None) -> dict[str, Any]:
        predicate = dict(predicate or {})
        if self.id_field in predicate and not isinstance(predicate[self.id_field], dict):
            predicate[self.id_field] = self.coerce_id(predicate[self.id_field])
        return predicate

    @abstractmethod
    def _query(self, predicate: dict[str, Any], *, single: bool) -> BaseQuery:
        ...

    @abstractmethod
    def new(self, data: dict[str, Any] | None = None) -> BaseEntity:
        ...

    @abstractmethod
    def wrap(self, document: dict[str, Any]) -> BaseEntity:
        """Wrap a stored document as an entity."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"


def _unique(values: list[Any]) -> list[Any]:
    seen: set[str] = set()
    unique: list[Any] = []
    for value in values:
        key = str(value)
        if key not in seen:
            seen.add(key)
            unique.append(value)
    return unique


__all__ = [
    "Entity",
    "Query",
    "Model",
    "PopulateDirective",
    "BaseEntity",
    "BaseQuery",
    "StoreModel",
    "get_path",
    "set_path",
]
