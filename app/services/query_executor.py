from __future__ import annotations

import logging
import math
import threading
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from sqlalchemy import BigInteger, Integer, SmallInteger, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Query, Session, aliased, load_only, selectinload
from starlette.concurrency import run_in_threadpool

from app.core.errors import EngineFailure, InvalidQuery, QueryCancelled, QueryValidationError
from app.services.collections import collection_config
from app.services.query_compiler import QueryPlan, SortKey
from app.services.query_operators import Arity, OperatorKind, lookup_operator
from app.services.query_predicates import And, Leaf, Or, Predicate, is_true

_LOG = logging.getLogger("app.query")

# Checked in order: BigInteger and SmallInteger are Integer subclasses.
_INTEGER_BITS = ((BigInteger, 64), (SmallInteger, 16), (Integer, 32))


def _bad_filter_value(column_key: str, kind: str) -> QueryValidationError:
    return QueryValidationError(f'Invalid filter value for field "{column_key}" ({kind})')


def _coerce_bool_filter_value(column_key: str, value):
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise _bad_filter_value(column_key, "boolean")


def _check_number_range(column_key: str, number, col_type):
    if isinstance(number, float) and not math.isfinite(number):
        raise _bad_filter_value(column_key, "number out of range")
    if isinstance(number, Decimal) and not number.is_finite():
        raise _bad_filter_value(column_key, "number out of range")
    if isinstance(number, int):
        for type_class, bits in _INTEGER_BITS:
            if isinstance(col_type, type_class):
                limit = 2 ** (bits - 1)
                if not -limit <= number < limit:
                    raise _bad_filter_value(column_key, "number out of range")
                break
    return number


def _coerce_number_filter_value(column_key: str, value, python_type, col_type=None):
    if python_type in {int, float} and isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return _check_number_range(column_key, python_type(value), col_type)
        except (OverflowError, ValueError):
            raise _bad_filter_value(column_key, "number out of range")
    if python_type is Decimal and isinstance(value, (Decimal, int, float)) and not isinstance(value, bool):
        return _check_number_range(column_key, Decimal(str(value)), col_type)
    text = str(value).strip()
    if not text:
        raise _bad_filter_value(column_key, "number")
    normalized = text.replace(",", ".")
    try:
        if python_type is int:
            number = int(normalized)
        elif python_type is float:
            number = float(normalized)
        else:
            number = Decimal(normalized)
    except (ValueError, TypeError, InvalidOperation):
        raise _bad_filter_value(column_key, "number")
    return _check_number_range(column_key, number, col_type)


def _coerce_date_filter_value(column_key: str, value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        raise _bad_filter_value(column_key, "date")
    try:
        # Accept either YYYY-MM-DD or full ISO datetime and take its date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise _bad_filter_value(column_key, "date")


def _coerce_datetime_filter_value(column_key: str, value, timezone_aware: bool):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise _bad_filter_value(column_key, "datetime")
        try:
            if "T" not in text and " " not in text and len(text) == 10:
                # Date-only value for timestamp columns -> start of the day.
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _bad_filter_value(column_key, "datetime")
    if timezone_aware and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if not timezone_aware and parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _column_python_type(column):
    try:
        return column.property.columns[0].type.python_type
    except (AttributeError, IndexError, NotImplementedError):
        return None


def _coerce_filter_value(column, value):
    if value is None:
        return None
    python_type = _column_python_type(column)
    col_type = column.property.columns[0].type
    if python_type is uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value).strip())
        except ValueError:
            raise QueryValidationError(f'Invalid UUID in filter for field "{column.key}"')
    if python_type is bool:
        return _coerce_bool_filter_value(column.key, value)
    if python_type in {int, float, Decimal}:
        return _coerce_number_filter_value(column.key, value, python_type, col_type)
    if python_type is datetime:
        aware = bool(getattr(col_type, "timezone", False))
        return _coerce_datetime_filter_value(column.key, value, aware)
    if python_type is date:
        return _coerce_date_filter_value(column.key, value)
    return value


def _is_date_only_filter_literal(raw_value) -> bool:
    if isinstance(raw_value, date) and not isinstance(raw_value, datetime):
        return True
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def _columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {attr.key: getattr(model, attr.key) for attr in mapper.column_attrs}


def default_order(model: type) -> list[SortKey]:
    columns = _columns_map(model)
    if "created_at" in columns:
        return [SortKey(("created_at",), "DESC")]
    return []


class SqlAlchemyCollection:
    """Query execution interface and metadata provider for one mapped model.

    Hidden fields of every model reached by a path are treated as unknown. With
    ``public=True`` only relations to collections that have a public scope can be
    followed, and that scope is applied to every hop (filters, sort joins, loaders).
    """

    def __init__(self, db: Session, name: str, model: type, *, public: bool = False):
        self.db = db
        self.name = name
        self.model = model
        self.public = public
        self._cancelled = threading.Event()

    def field_names(self) -> list[str]:
        return list(self._visible_columns(self.model).keys())

    def relation_names(self) -> list[str]:
        return [
            rel.key
            for rel in sa_inspect(self.model).relationships
            if not self.public or self._public_scope(rel.mapper.class_) is not None
        ]

    def cancel(self) -> None:
        self._cancelled.set()

    async def execute(self, plan: QueryPlan) -> tuple[list[Any], int]:
        return await run_in_threadpool(self.execute_sync, plan)

    def execute_sync(self, plan: QueryPlan) -> tuple[list[Any], int]:
        if self._cancelled.is_set():
            raise QueryCancelled("Query cancelled")
        # The worker owns its session: the request session may be closed while this thread still runs.
        with Session(bind=self.db.get_bind(), autoflush=False) as session:
            # Everything is compiled before the first statement so that bad plans never reach the engine.
            where = self.where_clause(plan.predicate)
            base = session.query(self.model)
            if where is not None:
                base = base.filter(where)
            rows_query = self._apply_order(base, plan.order or default_order(self.model))
            rows_query = rows_query.options(*self._load_options(plan))
            try:
                total = base.count()
                if self._cancelled.is_set():
                    raise QueryCancelled("Query cancelled")
                rows = rows_query.offset(plan.skip).limit(plan.take).all()
            except OverflowError:
                _LOG.warning("query on %s rejected by the driver: value out of range", self.name)
                raise QueryValidationError("Filter value out of range")
            except SQLAlchemyError as exc:
                _LOG.exception("query on %s failed", self.name)
                raise EngineFailure("Storage engine failure") from exc
        return rows, total

    # visibility

    def _visible_columns(self, model: type) -> dict[str, Any]:
        hidden = collection_config(sa_inspect(model).local_table.name).hidden_fields
        return {key: column for key, column in _columns_map(model).items() if key not in hidden}

    @staticmethod
    def _public_scope(model: type):
        return collection_config(sa_inspect(model).local_table.name).public_scope

    def _relation(self, mapper, rel_name: str, path: str):
        rel = mapper.relationships.get(rel_name)
        if rel is None or (self.public and self._public_scope(rel.mapper.class_) is None):
            raise InvalidQuery(f'Unknown relation "{rel_name}" in "{path}"')
        return rel

    def _scope_clauses(self, model: type, entity: Any = None) -> list[Any]:
        if not self.public:
            return []
        entity = model if entity is None else entity
        return [getattr(entity, key) == value for key, value in (self._public_scope(model) or {}).items()]

    # predicate -> SQL

    def where_clause(self, predicate: Predicate):
        if is_true(predicate):
            return None
        return self._clause(self.model, predicate)

    def _clause(self, model: type, predicate: Predicate):
        if isinstance(predicate, Leaf):
            return self._leaf_clause(model, predicate.field.split("."), predicate)
        if isinstance(predicate, And):
            return and_(*(self._clause(model, item) for item in predicate.items))
        if isinstance(predicate, Or):
            return or_(*(self._clause(model, item) for item in predicate.items))
        raise InvalidQuery(f"Unsupported predicate {predicate!r}")

    def _leaf_clause(self, model: type, path: list[str], leaf: Leaf):
        if len(path) > 1:
            rel = self._relation(sa_inspect(model), path[0], leaf.field)
            target = rel.mapper.class_
            inner = self._leaf_clause(target, path[1:], leaf)
            scope = self._scope_clauses(target)
            if scope:
                inner = and_(inner, *scope)
            attr = getattr(model, path[0])
            return attr.any(inner) if rel.uselist else attr.has(inner)

        column = self._visible_columns(model).get(path[0])
        if column is None:
            raise InvalidQuery(f'Unknown field "{leaf.field}"')
        rule = lookup_operator(leaf.operator.value)
        if rule is None:
            raise InvalidQuery(f'Unsupported operator "{leaf.operator}"')
        if not rule.coerce and _column_python_type(column) is not str:
            raise InvalidQuery(f'Operator "{leaf.operator.value}" needs a text field, "{leaf.field}" is not one')

        if (
            leaf.operator in {OperatorKind.EQ, OperatorKind.NE}
            and _column_python_type(column) is datetime
            and _is_date_only_filter_literal(leaf.value)
        ):
            day_start = _coerce_filter_value(column, leaf.value)
            day_expr = (column >= day_start) & (column < day_start + timedelta(days=1))
            return day_expr if leaf.operator is OperatorKind.EQ else ~day_expr

        value = leaf.value
        if rule.coerce:
            if rule.arity in {Arity.LIST, Arity.PAIR}:
                value = tuple(_coerce_filter_value(column, item) for item in value)
            else:
                value = _coerce_filter_value(column, value)
        return rule.clause(column, value)

    # order / load options

    def _apply_order(self, query: Query, order: Sequence[SortKey]) -> Query:
        joined: dict[tuple[str, ...], Any] = {}
        clauses = []
        for key in order:
            sort_path = ".".join(key.path)
            entity = self.model
            mapper = sa_inspect(self.model)
            for depth, rel_name in enumerate(key.relations):
                rel = self._relation(mapper, rel_name, sort_path)
                if rel.uselist:
                    raise InvalidQuery(f'Cannot sort by to-many relation "{rel_name}"')
                prefix = key.path[: depth + 1]
                target = joined.get(prefix)
                if target is None:
                    target = aliased(rel.mapper.class_)
                    onclause = getattr(entity, rel_name)
                    scope = self._scope_clauses(rel.mapper.class_, target)
                    if scope:
                        onclause = onclause.and_(*scope)
                    query = query.outerjoin(target, onclause)
                    joined[prefix] = target
                entity = target
                mapper = rel.mapper
            if key.field not in self._visible_columns(mapper.class_):
                raise InvalidQuery(f'Unknown sort field "{sort_path}"')
            column = getattr(entity, key.field)
            clauses.append(column.asc() if key.direction == "ASC" else column.desc())
        # Primary key tie-break keeps page boundaries stable.
        clauses.extend(column.asc() for column in sa_inspect(self.model).primary_key)
        return query.order_by(*clauses)

    def _load_options(self, plan: QueryPlan) -> list[Any]:
        options: list[Any] = []
        mapper = sa_inspect(self.model)
        for path in plan.relations:
            entity_mapper = mapper
            loader = None
            for part in path.split("."):
                rel = self._relation(entity_mapper, part, path)
                attr = getattr(entity_mapper.class_, part)
                scope = self._scope_clauses(rel.mapper.class_)
                if scope:
                    attr = attr.and_(*scope)
                loader = selectinload(attr) if loader is None else loader.selectinload(attr)
                entity_mapper = rel.mapper
            options.append(loader)

        if plan.projection is not None:
            columns = self._visible_columns(self.model)
            unknown = sorted(name for name in plan.projection if name not in columns)
            if unknown:
                raise InvalidQuery("Unknown select fields: " + ", ".join(unknown))
            selected = set(plan.projection)
            selected.update(column.key for column in mapper.primary_key)
            # Relation loaders need the local foreign keys of the first hop.
            for path in plan.relations:
                rel = mapper.relationships[path.split(".")[0]]
                for local in rel.local_columns:
                    selected.add(mapper.get_property_by_column(local).key)
            all_columns = _columns_map(self.model)
            options.append(load_only(*(all_columns[name] for name in sorted(selected))))
        return options
