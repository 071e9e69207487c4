from __future__ import annotations

from typing import Any, Iterable, Literal, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, JsonValue

# A stored document: string-keyed map of JSON values (str, int, float, bool, None, dict, list).
Document = dict[str, JsonValue]

FilterOperator = Literal["==", "!=", ">", "<", ">=", "<="]

# Fields owned by the store; callers cannot set them through create or update.
ID_FIELD = "id"
CREATED_AT_FIELD = "createdAt"
UPDATED_AT_FIELD = "updatedAt"
MANAGED_FIELDS = (ID_FIELD, CREATED_AT_FIELD, UPDATED_AT_FIELD)


class QueryFilter(BaseModel):
    """One (field, operator, value) predicate of a query. Filters are ANDed."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator
    value: JsonValue = None

    @classmethod
    def coerce(cls, raw: "QueryFilter | Mapping[str, Any] | Sequence[Any]") -> "QueryFilter":
        if isinstance(raw, QueryFilter):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        if isinstance(raw, (list, tuple)) and len(raw) == 3:
            field, operator, value = raw
            return cls.model_validate({"field": field, "operator": operator, "value": value})
        raise ValueError(f"cannot interpret {raw!r} as a query filter")


FilterInput = QueryFilter | Mapping[str, Any] | Sequence[Any]


def coerce_filters(filters: Iterable[FilterInput] | None) -> list[QueryFilter]:
    if not filters:
        return []
    return [QueryFilter.coerce(f) for f in filters]
