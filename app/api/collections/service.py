from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, JSON, Numeric

from app.schemas.query import PaginatedResult, QueryParams
from app.services.collections import COLLECTIONS, collection_config, collection_model_map, resolve_collection
from app.services.pagination import PaginateOptions, paginate
from app.services.query_compiler import QueryPlan, compile_relations
from app.services.query_executor import SqlAlchemyCollection
from app.services.query_operators import OperatorKind
from app.services.query_predicates import Leaf
from app.services.serialization import row_to_dict

from .payloads import _load_row_or_404, _pk_value, _prepare_payload

_LOG = logging.getLogger("app.crud")


def _integrity_error(detail: str = "Data constraint violation") -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def _column_kind(column: Any) -> str:
    col_type = column.type
    if isinstance(col_type, Boolean):
        return "boolean"
    if isinstance(col_type, (Integer, Numeric, Float)):
        return "number"
    if isinstance(col_type, DateTime):
        return "datetime"
    if isinstance(col_type, Date):
        return "date"
    if isinstance(col_type, JSON):
        return "json"
    try:
        python_type = col_type.python_type
    except NotImplementedError:
        python_type = None
    if python_type is uuid.UUID:
        return "uuid"
    return "text"


def _collection_meta(name: str, model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    config = collection_config(name)
    return {
        "collection": name,
        "fields": [
            {"name": column.key, "kind": _column_kind(column), "nullable": bool(column.nullable)}
            for column in mapper.columns
            if column.key not in config.hidden_fields
        ],
        "relations": [
            {"name": rel.key, "target": rel.mapper.local_table.name, "many": bool(rel.uselist)}
            for rel in mapper.relationships
        ],
        "search_fields": list(config.default_search_fields),
        "public": config.public_scope is not None,
    }


def list_collections_meta_service() -> dict[str, Any]:
    models = collection_model_map()
    return {"collections": [_collection_meta(name, models[name]) for name in COLLECTIONS if name in models]}


async def query_collection_service(
    collection: str,
    query: QueryParams,
    db: Session,
    *,
    public: bool = False,
) -> PaginatedResult[Any]:
    normalized, model = resolve_collection(collection)
    config = collection_config(normalized)
    mandatory = None
    if public:
        if config.public_scope is None:
            raise HTTPException(status_code=404, detail="Collection not found")
        mandatory = dict(config.public_scope)
    handle = SqlAlchemyCollection(db, normalized, model, public=public)
    options = PaginateOptions(
        default_search_fields=config.default_search_fields,
        mandatory=mandatory,
        serialize=row_to_dict,
    )
    return await paginate(handle, query, options)


async def get_row_service(collection: str, row_id: str, query: QueryParams, db: Session) -> dict[str, Any]:
    normalized, model = resolve_collection(collection)
    handle = SqlAlchemyCollection(db, normalized, model)
    pk = sa_inspect(model).primary_key[0]
    plan = QueryPlan(
        collection=normalized,
        predicate=Leaf(pk.key, OperatorKind.EQ, _pk_value(model, row_id)),
        order=(),
        projection=None,
        relations=compile_relations(query.relations, query.load_all, handle),
        skip=0,
        take=1,
    )
    rows, _ = await handle.execute(plan)
    if not rows:
        raise HTTPException(status_code=404, detail="Row not found")
    return row_to_dict(rows[0])


def create_row_service(collection: str, payload: dict[str, Any], db: Session) -> dict[str, Any]:
    normalized, model = resolve_collection(collection)
    prepared = _prepare_payload(db, model, normalized, payload, is_update=False)
    row = model(**prepared)
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except IntegrityError:
        db.rollback()
        raise _integrity_error()
    _LOG.info("created %s %s", normalized, row.id)
    return row_to_dict(row)


def update_row_service(collection: str, row_id: str, payload: dict[str, Any], db: Session) -> dict[str, Any]:
    normalized, model = resolve_collection(collection)
    row = _load_row_or_404(db, model, row_id)
    prepared = _prepare_payload(db, model, normalized, payload, is_update=True)
    for key, value in prepared.items():
        setattr(row, key, value)
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except IntegrityError:
        db.rollback()
        raise _integrity_error()
    _LOG.info("updated %s %s fields=%s", normalized, row_id, ",".join(sorted(prepared)))
    return row_to_dict(row)


def delete_row_service(collection: str, row_id: str, db: Session) -> dict[str, Any]:
    normalized, model = resolve_collection(collection)
    row = _load_row_or_404(db, model, row_id)
    entity_id = str(row.id)
    try:
        db.delete(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _integrity_error("Row cannot be deleted because related rows reference it")
    _LOG.info("deleted %s %s", normalized, entity_id)
    return {"status": "deleted", "id": entity_id}
