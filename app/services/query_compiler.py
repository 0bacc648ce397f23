from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from app.core.config import settings
from app.core.errors import QueryValidationError
from app.schemas.query import FIELD_PATH_RE, FilterCondition, FilterGroup, QueryParams
from app.services.query_operators import MalformedCondition, OperatorKind, lookup_operator
from app.services.query_predicates import TRUE, Leaf, Predicate, all_of, any_of, conjoin

_LOG = logging.getLogger("app.query")

SORT_DIRECTIONS = {"ASC", "DESC"}
DEFAULT_SORT_DIRECTION = "DESC"


class CollectionMetadata(Protocol):
    def field_names(self) -> Sequence[str]: ...

    def relation_names(self) -> Sequence[str]: ...


@dataclass(frozen=True)
class SortKey:
    path: tuple[str, ...]
    direction: str = DEFAULT_SORT_DIRECTION

    @property
    def relations(self) -> tuple[str, ...]:
        return self.path[:-1]

    @property
    def field(self) -> str:
        return self.path[-1]


@dataclass(frozen=True)
class QueryPlan:
    collection: str
    predicate: Predicate
    order: tuple[SortKey, ...]
    projection: Optional[frozenset[str]]
    relations: tuple[str, ...]
    skip: int
    take: int


def _strict(strict: bool | None) -> bool:
    return settings.QUERY_STRICT_CONDITIONS if strict is None else strict


def _drop_or_raise(message: str, strict: bool) -> Predicate:
    if strict:
        raise QueryValidationError(message)
    _LOG.warning("filter condition dropped: %s", message)
    return TRUE


def compile_condition(condition: FilterCondition, *, strict: bool | None = None) -> Predicate:
    strict = _strict(strict)
    rule = lookup_operator(condition.operator)
    if rule is None:
        return _drop_or_raise(f'unsupported operator "{condition.operator}" on field "{condition.field}"', strict)
    try:
        value = rule.normalize(condition.value)
    except MalformedCondition as exc:
        return _drop_or_raise(f'field "{condition.field}": {exc}', strict)
    return Leaf(condition.field, rule.kind, value)


def compile_filter(group: FilterGroup | None, *, strict: bool | None = None, _depth: int = 1) -> Predicate:
    if group is None:
        return TRUE
    if _depth > settings.QUERY_FILTER_MAX_DEPTH:
        raise QueryValidationError(f"filter nesting exceeds {settings.QUERY_FILTER_MAX_DEPTH} levels")
    parts: list[Predicate] = [compile_condition(condition, strict=strict) for condition in group.conditions]
    parts.extend(compile_filter(sub, strict=strict, _depth=_depth + 1) for sub in group.groups)
    # Every constraint is kept under AND, including repeated fields (intersection).
    if group.operator == "or":
        return any_of(parts)
    return all_of(parts)


def compile_search(
    term: str | None,
    fields: Sequence[str] | None = None,
    default_fields: Sequence[str] | None = None,
) -> Predicate:
    text = (term or "").strip()
    if not text:
        return TRUE
    resolved = list(fields or default_fields or [])
    if not resolved:
        _LOG.debug("search term %r dropped: no search fields configured", text)
        return TRUE
    for field in resolved:
        if not FIELD_PATH_RE.fullmatch(field):
            raise QueryValidationError(f'invalid search field "{field}"')
    return any_of(Leaf(field, OperatorKind.CONTAINS, text) for field in resolved)


def compile_sort(sort_by: str | None, sort_order: str | None = None) -> tuple[SortKey, ...]:
    if not sort_by:
        return ()
    directions: list[str] = []
    for token in (sort_order or "").split(","):
        token = token.strip().upper()
        if not token:
            continue
        if token not in SORT_DIRECTIONS:
            raise QueryValidationError(f'sortOrder must be ASC or DESC, got "{token}"')
        directions.append(token)

    keys: list[SortKey] = []
    seen: set[tuple[str, ...]] = set()
    last = DEFAULT_SORT_DIRECTION
    for index, raw in enumerate(part.strip() for part in sort_by.split(",")):
        if index < len(directions):
            last = directions[index]
        if not raw:
            continue
        if not FIELD_PATH_RE.fullmatch(raw):
            raise QueryValidationError(f'invalid sort field "{raw}"')
        path = tuple(raw.split("."))
        if path in seen:
            continue
        seen.add(path)
        keys.append(SortKey(path, last))
    return tuple(keys)


def compile_projection(select: Sequence[str] | None, exclude: Sequence[str] | None = None) -> Optional[frozenset[str]]:
    # Without select every field is returned; exclude alone does not narrow the output.
    if not select:
        return None
    excluded = set(exclude or ())
    return frozenset(field for field in select if field not in excluded)


def normalize_relation_paths(paths: Iterable[str]) -> tuple[str, ...]:
    unique: list[str] = []
    for raw in paths:
        path = str(raw or "").strip()
        if not path:
            continue
        if not FIELD_PATH_RE.fullmatch(path):
            raise QueryValidationError(f'invalid relation path "{path}"')
        if path not in unique:
            unique.append(path)
    return tuple(sorted(unique, key=lambda item: item.count(".")))


def compile_relations(
    paths: Sequence[str] | None,
    load_all: bool = False,
    metadata: CollectionMetadata | None = None,
) -> tuple[str, ...]:
    if load_all:
        if metadata is None:
            _LOG.warning("loadAll requested without collection metadata; no relations loaded")
            return ()
        return tuple(sorted(metadata.relation_names()))
    return normalize_relation_paths(paths or ())


def mandatory_predicate(where: Predicate | Mapping[str, Any] | None) -> Predicate:
    """Caller constraints: a ready predicate or a ``{field: value}`` equality mapping."""
    if where is None:
        return TRUE
    if isinstance(where, Mapping):
        return all_of(Leaf(str(field), OperatorKind.EQ, value) for field, value in where.items())
    return where


def merge_predicates(
    filter_predicate: Predicate,
    search_predicate: Predicate,
    mandatory: Predicate | Mapping[str, Any] | None = None,
) -> Predicate:
    """mandatory AND filter AND search, distributing AND over any OR list."""
    merged = conjoin(mandatory_predicate(mandatory), filter_predicate)
    return conjoin(merged, search_predicate)


def compile_query(
    query: QueryParams,
    *,
    collection: str,
    metadata: CollectionMetadata | None = None,
    default_search_fields: Sequence[str] = (),
    mandatory: Predicate | Mapping[str, Any] | None = None,
    additional_relations: Sequence[str] = (),
    strict: bool | None = None,
) -> QueryPlan:
    predicate = merge_predicates(
        compile_filter(query.filter, strict=strict),
        compile_search(query.search, query.search_fields, default_search_fields),
        mandatory,
    )
    relations = compile_relations(query.relations, query.load_all, metadata)
    if additional_relations:
        relations = normalize_relation_paths([*relations, *additional_relations])
    return QueryPlan(
        collection=collection,
        predicate=predicate,
        order=compile_sort(query.sort_by, query.sort_order),
        projection=compile_projection(query.select, query.exclude),
        relations=relations,
        skip=(query.page - 1) * query.limit,
        take=query.limit,
    )
