from __future__ import annotations

import json
import re
from typing import Any, Generic, List, Literal, Mapping, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.config import settings
from app.core.errors import QueryValidationError

FIELD_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

LIST_PARAMS = ("searchFields", "select", "exclude", "relations")

T = TypeVar("T")


def _split_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return value
    items: list[str] = []
    for raw in value:
        if not isinstance(raw, str):
            items.append(raw)
            continue
        items.extend(part.strip() for part in raw.split(",") if part.strip())
    return items


def _json_nesting(text: str) -> int:
    """Deepest object/array nesting of a JSON document, ignoring brackets inside strings."""
    depth = deepest = 0
    in_string = escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "[{":
            depth += 1
            deepest = max(deepest, depth)
        elif char in "]}":
            depth -= 1
    return deepest


class FilterCondition(BaseModel):
    field: str
    operator: str
    value: Any = None

    @field_validator("field")
    @classmethod
    def _field_is_path(cls, value: str) -> str:
        text = value.strip()
        if not FIELD_PATH_RE.fullmatch(text):
            raise ValueError("field must be an identifier or a dotted relation path")
        return text

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_text(cls, value: Any) -> str:
        return str(value or "").strip()


class FilterGroup(BaseModel):
    operator: Literal["and", "or"] = "and"
    conditions: List[FilterCondition] = Field(default_factory=list)
    groups: List[FilterGroup] = Field(default_factory=list)

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_lower(cls, value: Any) -> Any:
        if value is None:
            return "and"
        return str(value).strip().lower()

    def depth(self) -> int:
        return 1 + max((group.depth() for group in self.groups), default=0)


FilterGroup.model_rebuild()


class QueryParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.QUERY_DEFAULT_LIMIT, ge=1)
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    search: Optional[str] = None
    search_fields: List[str] = Field(default_factory=list)
    filter: Optional[FilterGroup] = None
    select: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    relations: List[str] = Field(default_factory=list)
    load_all: bool = False

    @field_validator("search_fields", "select", "exclude", "relations", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("filter", mode="before")
    @classmethod
    def _filter_json(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            # A group level costs two brackets (object and "groups" array), a condition up to three more.
            if _json_nesting(text) > 2 * settings.QUERY_FILTER_MAX_DEPTH + 4:
                raise ValueError(f"filter nesting exceeds {settings.QUERY_FILTER_MAX_DEPTH} levels")
            try:
                return json.loads(text)
            except (RecursionError, ValueError):
                raise ValueError("filter must be a JSON object")
        return value

    @model_validator(mode="after")
    def _limit_in_range(self) -> QueryParams:
        if self.limit > settings.QUERY_MAX_LIMIT:
            raise ValueError(f"limit must be less than or equal to {settings.QUERY_MAX_LIMIT}")
        return self

    @model_validator(mode="after")
    def _filter_depth(self) -> QueryParams:
        if self.filter is not None and self.filter.depth() > settings.QUERY_FILTER_MAX_DEPTH:
            raise ValueError(f"filter nesting exceeds {settings.QUERY_FILTER_MAX_DEPTH} levels")
        return self


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(item) for item in error.get("loc", ()) if item != "__root__")
        msg = str(error.get("msg") or "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_query_params(raw: Mapping[str, Any]) -> QueryParams:
    """Build ``QueryParams`` from a flat query-string mapping.

    List parameters accept repeated keys (``select=a&select=b``), the ``key[]``
    form and comma-separated values.
    """
    getlist = getattr(raw, "getlist", None)
    data: dict[str, Any] = {}
    for key in raw.keys():
        base = key[:-2] if key.endswith("[]") else key
        if base in LIST_PARAMS:
            values = getlist(key) if getlist is not None else raw[key]
            if not isinstance(values, (list, tuple)):
                values = [values]
            data.setdefault(base, []).extend(values)
        else:
            data[base] = raw[key]
    try:
        return QueryParams.model_validate(data)
    except ValidationError as exc:
        raise QueryValidationError(_format_errors(exc))


class PageMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    current_page: int
    items: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class PaginatedResult(BaseModel, Generic[T]):
    data: List[T]
    meta: PageMeta
