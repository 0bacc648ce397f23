from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.inspection import inspect as sa_inspect

from app.services.collections import hidden_response_fields


def serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def row_to_dict(row: Any, _path: frozenset[int] = frozenset()) -> dict[str, Any]:
    """Serialize loaded columns and loaded relations; never triggers a lazy load."""
    state = sa_inspect(row)
    mapper = state.mapper
    unloaded = state.unloaded
    hidden = hidden_response_fields(mapper.local_table.name)
    path = _path | {id(row)}

    out: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        if attr.key in unloaded or attr.key in hidden:
            continue
        out[attr.key] = serialize_value(getattr(row, attr.key))
    for rel in mapper.relationships:
        if rel.key in unloaded:
            continue
        value = getattr(row, rel.key)
        if value is None:
            out[rel.key] = None
        elif rel.uselist:
            out[rel.key] = [row_to_dict(item, path) for item in value if id(item) not in path]
        elif id(value) not in path:
            out[rel.key] = row_to_dict(value, path)
    return out
