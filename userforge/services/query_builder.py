"""
User listing query builder.

Turns raw request query parameters into a validated, bounded UserQuery:
- reserved control keys: page, limit, sort, fields, search
- every other key is a filter on an allow-listed attribute, optionally with a
  comparison operator in bracket form (``age[gte]=18``)

Unknown keys, operators, sort fields and unparsable values are collected and
raised together as one ValidationError.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from userforge.models.user import PUBLIC_FIELDS, ROLES
from userforge.utils.exceptions import ValidationError

CONTROL_KEYS = ("page", "limit", "sort", "fields", "search")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

_KEY_PATTERN = re.compile(r"^(?P<name>[A-Za-z_]+)(?:\[(?P<op>[A-Za-z]+)\])?$")


class ComparisonOperator(str, Enum):
    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


def _parse_int(value: str) -> int:
    return int(value)


def _parse_str(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value.strip()


def _parse_email(value: str) -> str:
    return _parse_str(value).lower()


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError("must be true or false")


def _parse_role(value: str) -> str:
    if value not in ROLES:
        raise ValueError(f"must be one of: {', '.join(ROLES)}")
    return value


def _parse_datetime(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class FilterableField:
    db_field: str
    parse: Callable[[str], Any]
    ordered: bool = False


FILTERABLE_FIELDS: Dict[str, FilterableField] = {
    "name": FilterableField("name", _parse_str),
    "email": FilterableField("email", _parse_email),
    "role": FilterableField("role", _parse_role),
    "isActive": FilterableField("is_active", _parse_bool),
    "age": FilterableField("age", _parse_int, ordered=True),
    "createdAt": FilterableField("created_at", _parse_datetime, ordered=True),
    "updatedAt": FilterableField("updated_at", _parse_datetime, ordered=True),
    "lastLogin": FilterableField("last_login", _parse_datetime, ordered=True),
}

SORTABLE_FIELDS: Dict[str, str] = {
    "name": "name",
    "email": "email",
    "age": "age",
    "role": "role",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "lastLogin": "last_login",
}


@dataclass(frozen=True)
class FieldFilter:
    db_field: str
    operator: ComparisonOperator
    value: Any

    @property
    def lookup(self) -> str:
        """mongoengine keyword for this filter (``age__gte``)"""
        if self.operator is ComparisonOperator.EQ:
            return self.db_field
        return f"{self.db_field}__{self.operator.value}"


@dataclass(frozen=True)
class SortKey:
    db_field: str
    descending: bool = False

    def to_order_by(self) -> str:
        return f"-{self.db_field}" if self.descending else f"+{self.db_field}"


@dataclass
class UserQuery:
    """A validated, bounded listing query"""

    filters: List[FieldFilter] = field(default_factory=list)
    search: Optional[str] = None
    sort: List[SortKey] = field(default_factory=lambda: [SortKey("created_at", descending=True)])
    fields: Optional[List[str]] = None
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def mongo_filters(self) -> Dict[str, Any]:
        return {f.lookup: f.value for f in self.filters}

    def order_by(self) -> List[str]:
        keys = [s.to_order_by() for s in self.sort]
        # Primary key as tie-breaker keeps page boundaries stable
        if not any(s.db_field == "id" for s in self.sort):
            keys.append("+id")
        return keys

    def projection(self) -> Optional[List[str]]:
        """Document fields to load, or None for the full record"""
        if self.fields is None:
            return None
        return [PUBLIC_FIELDS[f] for f in self.fields if f != "id"]

    def pages(self, total: int) -> int:
        return math.ceil(total / self.limit) if total else 0


QueryParams = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _error(field_name: str, message: str, value: Any) -> Dict[str, Any]:
    return {"field": field_name, "message": message, "value": value}


def _parse_page_number(raw: Optional[str], name: str, default: int, errors: List[Dict[str, Any]]) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(_error(name, f"{name.capitalize()} must be an integer", raw))
        return default


def _parse_sort(raw: str, errors: List[Dict[str, Any]]) -> List[SortKey]:
    keys: List[SortKey] = []
    for part in (p.strip() for p in raw.split(",")):
        if not part:
            continue
        descending = part.startswith("-")
        name = part.lstrip("+-")
        db_field = SORTABLE_FIELDS.get(name)
        if db_field is None:
            errors.append(_error("sort", f"Invalid sort field '{name}'", raw))
            continue
        keys.append(SortKey(db_field, descending=descending))
    return keys


def _parse_fields(raw: str, errors: List[Dict[str, Any]]) -> List[str]:
    selected: List[str] = []
    for name in (p.strip() for p in raw.split(",")):
        if not name:
            continue
        if name not in PUBLIC_FIELDS:
            errors.append(_error("fields", f"Unknown field '{name}'", raw))
            continue
        if name not in selected:
            selected.append(name)
    return selected


def _parse_filter(key: str, raw: str, errors: List[Dict[str, Any]]) -> Optional[FieldFilter]:
    match = _KEY_PATTERN.match(key)
    if not match or match.group("name") not in FILTERABLE_FIELDS:
        errors.append(_error(key, f"Unknown filter '{key}'", raw))
        return None

    name = match.group("name")
    filterable = FILTERABLE_FIELDS[name]
    op_name = match.group("op") or ComparisonOperator.EQ.value
    try:
        operator = ComparisonOperator(op_name)
    except ValueError:
        errors.append(_error(key, f"Unknown operator '{op_name}'", raw))
        return None
    if operator is not ComparisonOperator.EQ and not filterable.ordered:
        errors.append(_error(key, f"Operator '{op_name}' is not supported on '{name}'", raw))
        return None

    try:
        value = filterable.parse(raw)
    except ValueError as e:
        errors.append(_error(key, f"Invalid value for '{name}': {e}", raw))
        return None
    return FieldFilter(filterable.db_field, operator, value)


def build_user_query(params: QueryParams) -> UserQuery:
    """Build a UserQuery from raw query parameters.

    Raises:
        ValidationError: listing every offending parameter.
    """
    pairs = list(params.items()) if isinstance(params, Mapping) else list(params)
    controls: Dict[str, str] = {}
    filter_pairs: List[Tuple[str, str]] = []
    for key, value in pairs:
        if key in CONTROL_KEYS:
            controls[key] = value
        else:
            filter_pairs.append((key, value))

    errors: List[Dict[str, Any]] = []
    query = UserQuery()

    for key, value in filter_pairs:
        parsed = _parse_filter(key, value, errors)
        if parsed is not None:
            query.filters.append(parsed)

    search = (controls.get("search") or "").strip()
    query.search = search or None

    sort_raw = controls.get("sort")
    if sort_raw:
        sort_keys = _parse_sort(sort_raw, errors)
        if sort_keys:
            query.sort = sort_keys

    fields_raw = controls.get("fields")
    if fields_raw:
        query.fields = _parse_fields(fields_raw, errors) or None

    page = _parse_page_number(controls.get("page"), "page", DEFAULT_PAGE, errors)
    limit = _parse_page_number(controls.get("limit"), "limit", DEFAULT_LIMIT, errors)
    query.page = max(page, 1)
    query.limit = min(max(limit, 1), MAX_LIMIT)

    if errors:
        raise ValidationError("Invalid query parameters", errors=errors)
    return query
