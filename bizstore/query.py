from __future__ import annotations

import operator as op
from typing import Any, Callable, Iterable

from .models import Document, QueryFilter

_MISSING = object()

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    ">": op.gt,
    "<": op.lt,
    ">=": op.ge,
    "<=": op.le,
}


def strict_equal(left: Any, right: Any) -> bool:
    """Equality that never treats a bool as a number (True != 1)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def evaluate(doc: Document, flt: QueryFilter) -> bool:
    value = doc.get(flt.field, _MISSING)
    if flt.operator == "==":
        return value is not _MISSING and strict_equal(value, flt.value)
    if flt.operator == "!=":
        return value is _MISSING or not strict_equal(value, flt.value)

    # Ordering against a missing/null field or an incomparable type is false.
    if value is _MISSING or value is None or flt.value is None:
        return False
    # Bools only order against bools, matching strict_equal.
    if isinstance(value, bool) != isinstance(flt.value, bool):
        return False
    try:
        return bool(_ORDERING[flt.operator](value, flt.value))
    except TypeError:
        return False


def matches(doc: Document, filters: Iterable[QueryFilter]) -> bool:
    return all(evaluate(doc, f) for f in filters)


def sort_key(value: Any) -> tuple[int, Any]:
    """
    Total ordering across JSON value types.

    Missing/None sort lowest, then bools, numbers, strings; containers compare equal
    to each other and sort highest.
    """
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, 0)


def execute(
    docs: Iterable[Document],
    filters: list[QueryFilter],
    order_by: str | None = None,
    limit: int | None = None,
) -> list[Document]:
    """Filter, order descending by `order_by` (stable), then truncate to `limit`."""
    result = [d for d in docs if matches(d, filters)]
    if order_by:
        result.sort(key=lambda d: sort_key(d.get(order_by, _MISSING)), reverse=True)
    if limit is not None:
        result = result[:limit]
    return result
