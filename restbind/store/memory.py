"""
In-memory Model handle.

Implements the same contract as MotorModel over a plain dict, with a
matcher for the filter grammar accepted by restbind.query. Intended for
tests and local development; data lives only as long as the process.
"""

from __future__ import annotations

import copy
import functools
import logging
import re
from typing import TYPE_CHECKING, Any, Iterable

from bson import ObjectId

from .base import BaseEntity, BaseQuery, StoreModel, get_path, set_path

if TYPE_CHECKING:
    from pydantic import BaseModel as Schema

logger = logging.getLogger(__name__)

_MISSING = object()


# =============================================================================
# Matching
# =============================================================================


def matches(document: dict[str, Any], predicate: dict[str, Any]) -> bool:
    """Check whether ``document`` satisfies ``predicate``."""
    for key, condition in predicate.items():
        if key == "$and":
            if not all(matches(document, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif key == "$nor":
            if any(matches(document, clause) for clause in condition):
                return False
        elif not _match_field(get_path(document, key, _MISSING), condition):
            return False
    return True


def _is_operator_object(condition: Any) -> bool:
    return isinstance(condition, dict) and any(k.startswith("$") for k in condition)


def _match_field(value: Any, condition: Any) -> bool:
    if _is_operator_object(condition):
        return all(
            _apply_operator(value, operator, operand, condition)
            for operator, operand in condition.items()
            if operator != "$options"
        )
    return _equals(value, condition)


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(item == expected for item in value)
    return value == expected


def _compare(value: Any, operand: Any, op: str) -> bool:
    candidates = value if isinstance(value, list) else [value]
    for candidate in candidates:
        if candidate is _MISSING or candidate is None:
            continue
        try:
            if op == "$gt" and candidate > operand:
                return True
            if op == "$gte" and candidate >= operand:
                return True
            if op == "$lt" and candidate < operand:
                return True
            if op == "$lte" and candidate <= operand:
                return True
        except TypeError:
            continue
    return False


def _regex(condition: dict[str, Any], pattern: str) -> re.Pattern[str]:
    flags = 0
    for char in condition.get("$options", ""):
        flags |= {"i": re.I, "m": re.M, "s": re.S, "x": re.X}.get(char, 0)
    return re.compile(pattern, flags)


def _apply_operator(value: Any, operator: str, operand: Any, condition: dict[str, Any]) -> bool:
    if operator == "$eq":
        return _equals(value, operand)
    if operator == "$ne":
        return not _equals(value, operand)
    if operator in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(value, operand, operator)
    if operator == "$in":
        return any(_equals(value, item) for item in operand)
    if operator == "$nin":
        return not any(_equals(value, item) for item in operand)
    if operator == "$exists":
        return (value is not _MISSING) == bool(operand)
    if operator == "$regex":
        pattern = _regex(condition, operand)
        candidates = value if isinstance(value, list) else [value]
        return any(isinstance(c, str) and pattern.search(c) for c in candidates)
    if operator == "$size":
        return isinstance(value, list) and len(value) == operand
    if operator == "$all":
        return isinstance(value, list) and all(item in value for item in operand)
    if operator == "$elemMatch":
        if not isinstance(value, list):
            return False
        if _is_operator_object(operand):
            return any(_match_field(item, operand) for item in value)
        return any(isinstance(item, dict) and matches(item, operand) for item in value)
    if operator == "$not":
        return not _match_field(value, operand)
    raise ValueError(f"Unsupported operator {operator}")


# =============================================================================
# Sorting and projection
# =============================================================================


def _sort_key_compare(a: Any, b: Any) -> int:
    # Missing/None sort first, mismatched types fall back to type name.
    if a is _MISSING or a is None:
        return 0 if (b is _MISSING or b is None) else -1
    if b is _MISSING or b is None:
        return 1
    try:
        return (a > b) - (a < b)
    except TypeError:
        return (type(a).__name__ > type(b).__name__) - (type(a).__name__ < type(b).__name__)


def sort_documents(
    documents: list[dict[str, Any]],
    spec: Iterable[tuple[str, int]],
) -> list[dict[str, Any]]:
    """Sort documents by ``(field, direction)`` pairs, first pair most significant."""
    result = list(documents)
    for field, direction in reversed(list(spec)):
        key = functools.cmp_to_key(_sort_key_compare)
        result.sort(key=lambda d: key(get_path(d, field, _MISSING)), reverse=direction < 0)
    return result


def project(document: dict[str, Any], projection: dict[str, int] | None, id_field: str) -> dict[str, Any]:
    """Apply an inclusion or exclusion projection to a document."""
    if not projection:
        return document

    include_id = projection.get(id_field, 1) != 0
    fields = {k: v for k, v in projection.items() if k != id_field}

    if fields and all(v for v in fields.values()):
        projected: dict[str, Any] = {}
        if include_id and id_field in document:
            projected[id_field] = document[id_field]
        for path in fields:
            value = get_path(document, path, _MISSING)
            if value is not _MISSING:
                set_path(projected, path, value)
        return projected

    projected = copy.deepcopy(document)
    if not include_id:
        projected.pop(id_field, None)
    for path in fields:
        parts = path.split(".")
        parent = get_path(projected, ".".join(parts[:-1])) if len(parts) > 1 else projected
        if isinstance(parent, dict):
            parent.pop(parts[-1], None)
    return projected


# =============================================================================
# Model handle
# =============================================================================


class InMemoryEntity(BaseEntity):
    """Entity stored in an InMemoryModel."""

    _model: "InMemoryModel"

    async def _insert(self, document: dict[str, Any]) -> dict[str, Any]:
        id_field = self._model.id_field
        if document.get(id_field) is None:
            document[id_field] = self._model.generate_id()
        key = self._model.key(document[id_field])
        if key in self._model.documents:
            raise KeyError(f"Duplicate {id_field} {document[id_field]!r} in {self._model.name}")
        self._model.documents[key] = copy.deepcopy(document)
        return document

    async def _replace(self, document: dict[str, Any]) -> None:
        self._model.documents[self._model.key(self.id)] = copy.deepcopy(document)

    async def _delete(self) -> None:
        self._model.documents.pop(self._model.key(self.id), None)


class InMemoryQuery(BaseQuery["InMemoryModel"]):
    """Query evaluated against the model's documents."""

    async def _fetch(self) -> list[dict[str, Any]]:
        selected = [
            copy.deepcopy(doc)
            for doc in self.model.documents.values()
            if matches(doc, self.predicate)
        ]
        if self.sort_spec:
            selected = sort_documents(selected, self.sort_spec)

        end = None if self.limit_count is None else self.skip_count + self.limit_count
        window = selected[self.skip_count:end]
        return [project(doc, self.projection, self.model.id_field) for doc in window]


class InMemoryModel(StoreModel):
    """
    Model handle over an in-process dict of documents.

    Ids are ObjectIds by default so URLs and Location headers look the
    same as with MongoDB.

    Example:
        items = InMemoryModel("items", schema=Item)
        items.seed([{"name": "a"}, {"name": "b"}])
    """

    def __init__(
        self,
        name: str = "memory",
        *,
        schema: type["Schema"] | None = None,
        id_field: str = "_id",
        refs: dict[str, StoreModel] | None = None,
    ):
        super().__init__(name, schema=schema, id_field=id_field, refs=refs)
        self.documents: dict[str, dict[str, Any]] = {}

    @staticmethod
    def key(raw_id: Any) -> str:
        return str(raw_id)

    def generate_id(self) -> Any:
        return ObjectId()

    def coerce_id(self, raw_id: Any) -> Any:
        if isinstance(raw_id, str) and ObjectId.is_valid(raw_id):
            return ObjectId(raw_id)
        return raw_id

    def seed(self, documents: Iterable[dict[str, Any]]) -> list[Any]:
        """Insert raw documents without validation. Returns their ids."""
        ids = []
        for doc in documents:
            doc = dict(doc)
            if doc.get(self.id_field) is None:
                doc[self.id_field] = self.generate_id()
            self.documents[self.key(doc[self.id_field])] = copy.deepcopy(doc)
            ids.append(doc[self.id_field])
        logger.debug(f"Seeded {len(ids)} documents into {self.name}")
        return ids

    def clear(self) -> None:
        self.documents.clear()

    def __len__(self) -> int:
        return len(self.documents)

    def _query(self, predicate: dict[str, Any], *, single: bool) -> InMemoryQuery:
        return InMemoryQuery(self, predicate, single=single)

    def new(self, data: dict[str, Any] | None = None) -> InMemoryEntity:
        return InMemoryEntity(self, data or {}, is_new=True)

    def wrap(self, document: dict[str, Any]) -> InMemoryEntity:
        return InMemoryEntity(self, document, is_new=False)


__all__ = [
    "InMemoryEntity",
    "InMemoryQuery",
    "InMemoryModel",
    "matches",
    "sort_documents",
    "project",
]
