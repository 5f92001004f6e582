"""
Query-string grammar for list and detail requests.

Client input never reaches the store verbatim. The ``q`` parameter must
decode to a filter built only from field paths, a fixed set of
comparison operators and the logical combinators; ``sort`` and
``select`` accept field paths with an optional ``-`` prefix.

Grammar:
    filter     := { (field: condition | logical: [filter, ...])* }
    logical    := $and | $or | $nor
    condition  := literal | { (operator: operand)+ }
    operator   := $eq $ne $gt $gte $lt $lte $in $nin $exists $regex
                  $options $size $all $elemMatch $not
    field      := [A-Za-z_][A-Za-z0-9_]*(\\.[A-Za-z0-9_]+)*
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import InvalidQueryError

FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")

LOGICAL_OPERATORS = frozenset({"$and", "$or", "$nor"})
COMPARISON_OPERATORS = frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte"})
LIST_OPERATORS = frozenset({"$in", "$nin", "$all"})
FIELD_OPERATORS = COMPARISON_OPERATORS | LIST_OPERATORS | frozenset(
    {"$exists", "$regex", "$options", "$size", "$elemMatch", "$not"}
)

MAX_DEPTH = 8
REGEX_OPTIONS_RE = re.compile(r"^[imsx]*$")

INVALID_JSON_MESSAGE = "Query is not a valid JSON object"
INVALID_FILTER_MESSAGE = "Query is not a permitted filter"

_SCALARS = (str, int, float, bool, type(None))


# =============================================================================
# Filter (q)
# =============================================================================


def parse_filter(raw: str) -> dict[str, Any]:
    """
    Decode and validate the ``q`` parameter.

    Raises:
        InvalidQueryError: If ``raw`` is not a JSON object or uses
            anything outside the filter grammar
    """
    try:
        decoded = json.loads(raw)
    except ValueError as e:
        raise InvalidQueryError(INVALID_JSON_MESSAGE, errors=str(e)) from e

    if not isinstance(decoded, dict):
        raise InvalidQueryError(
            INVALID_JSON_MESSAGE,
            errors=f"expected an object, got {type(decoded).__name__}",
        )

    validate_filter(decoded)
    return decoded


def validate_filter(node: Any, depth: int = 0) -> None:
    """Check that ``node`` is a filter document within the grammar."""
    if depth > MAX_DEPTH:
        _reject(f"filter nested deeper than {MAX_DEPTH} levels")
    if not isinstance(node, dict):
        _reject(f"expected a filter object, got {type(node).__name__}")

    for key, value in node.items():
        if key in LOGICAL_OPERATORS:
            if not isinstance(value, list) or not value:
                _reject(f"{key} expects a non-empty list of filters")
            for clause in value:
                validate_filter(clause, depth + 1)
        elif key.startswith("$"):
            _reject(f"operator {key} is not allowed at the top level")
        elif not FIELD_RE.match(key):
            _reject(f"invalid field name {key!r}")
        else:
            _validate_condition(key, value, depth + 1)


def _validate_condition(field: str, value: Any, depth: int) -> None:
    if depth > MAX_DEPTH:
        _reject(f"filter nested deeper than {MAX_DEPTH} levels")

    if isinstance(value, dict) and any(k.startswith("$") for k in value):
        for operator, operand in value.items():
            _validate_operator(field, operator, operand, depth)
        if "$options" in value and "$regex" not in value:
            _reject(f"$options on {field!r} requires $regex")
        return

    _validate_literal(field, value, depth)


def _validate_operator(field: str, operator: str, operand: Any, depth: int) -> None:
    if operator not in FIELD_OPERATORS:
        _reject(f"operator {operator} is not allowed")

    if operator in COMPARISON_OPERATORS:
        _validate_literal(field, operand, depth + 1)
    elif operator in LIST_OPERATORS:
        if not isinstance(operand, list):
            _reject(f"{operator} on {field!r} expects a list")
        for item in operand:
            _validate_literal(field, item, depth + 1)
    elif operator == "$exists":
        if not isinstance(operand, bool):
            _reject(f"$exists on {field!r} expects a boolean")
    elif operator == "$size":
        if isinstance(operand, bool) or not isinstance(operand, int) or operand < 0:
            _reject(f"$size on {field!r} expects a non-negative integer")
    elif operator == "$regex":
        if not isinstance(operand, str):
            _reject(f"$regex on {field!r} expects a string")
        try:
            re.compile(operand)
        except re.error as e:
            _reject(f"$regex on {field!r} is not a valid pattern: {e}")
    elif operator == "$options":
        if not isinstance(operand, str) or not REGEX_OPTIONS_RE.match(operand):
            _reject(f"$options on {field!r} accepts only i, m, s and x")
    elif operator == "$elemMatch":
        if not isinstance(operand, dict):
            _reject(f"$elemMatch on {field!r} expects an object")
        if any(k.startswith("$") for k in operand):
            _validate_condition(field, operand, depth + 1)
        else:
            validate_filter(operand, depth + 1)
    elif operator == "$not":
        if not isinstance(operand, dict) or not operand or not all(k.startswith("$") for k in operand):
            _reject(f"$not on {field!r} expects an operator object")
        _validate_condition(field, operand, depth + 1)


def _validate_literal(field: str, value: Any, depth: int) -> None:
    if depth > MAX_DEPTH:
        _reject(f"filter nested deeper than {MAX_DEPTH} levels")
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, list):
        for item in value:
            _validate_literal(field, item, depth + 1)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if key.startswith("$"):
                _reject(f"operator {key} is not allowed inside a value of {field!r}")
            _validate_literal(field, item, depth + 1)
        return
    _reject(f"unsupported value for {field!r}")


def _reject(detail: str) -> None:
    raise InvalidQueryError(INVALID_FILTER_MESSAGE, errors=detail)


def merge_predicates(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """
    Narrow ``base`` by ``extra``.

    Keys present in both are combined under ``$and`` so that a
    server-side filter can never be overridden by a client-supplied one.
    """
    if not extra:
        return dict(base)
    if not base:
        return dict(extra)

    overlap = set(base) & set(extra)
    if not overlap:
        return {**base, **extra}

    clauses = list(base.get("$and", [])) if set(base) == {"$and"} else [base]
    clauses.append(extra)
    return {"$and": clauses}


# =============================================================================
# Sort and select
# =============================================================================


def _split_fields(raw: str) -> list[str]:
    return [part for part in re.split(r"[\s,]+", raw.strip()) if part]


def _check_field(parameter: str, name: str) -> None:
    if not FIELD_RE.match(name):
        raise InvalidQueryError(
            f"Invalid {parameter} parameter",
            errors=f"invalid field name {name!r}",
            parameter=parameter,
        )


def parse_sort(raw: str) -> list[tuple[str, int]]:
    """
    Parse ``sort`` as field paths with optional ``-`` for descending.

    Example:
        parse_sort("-created_at name") -> [("created_at", -1), ("name", 1)]
    """
    fields = _split_fields(raw)
    if not fields:
        raise InvalidQueryError("Invalid sort parameter", errors="empty", parameter="sort")

    spec: list[tuple[str, int]] = []
    for token in fields:
        direction = -1 if token.startswith("-") else 1
        name = token.lstrip("+-")
        _check_field("sort", name)
        spec.append((name, direction))
    return spec


def parse_select(raw: str) -> dict[str, int]:
    """
    Parse ``select`` into a store projection.

    Inclusions and exclusions cannot be mixed, except for ``-_id``.

    Example:
        parse_select("name email -_id") -> {"name": 1, "email": 1, "_id": 0}
    """
    fields = _split_fields(raw)
    if not fields:
        raise InvalidQueryError("Invalid select parameter", errors="empty", parameter="select")

    projection: dict[str, int] = {}
    for token in fields:
        include = 0 if token.startswith("-") else 1
        name = token.lstrip("+-")
        _check_field("select", name)
        projection[name] = include

    modes = {v for k, v in projection.items() if k != "_id"}
    if len(modes) > 1:
        raise InvalidQueryError(
            "Invalid select parameter",
            errors="cannot mix inclusion and exclusion",
            parameter="select",
        )
    return projection


__all__ = [
    "parse_filter",
    "validate_filter",
    "merge_predicates",
    "parse_sort",
    "parse_select",
    "INVALID_JSON_MESSAGE",
    "INVALID_FILTER_MESSAGE",
]
