from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from typing import Any

from fastapi import HTTPException
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.services.collections import SYSTEM_FIELDS

SLUG_SOURCES = {
    "categories": "name",
    "blogs": "title",
    "events": "title",
    "resources": "title",
}
ALLOWED_USER_ROLES = {"USER", "ADMIN", "EDITOR"}
PROTECTED_INPUT_FIELDS = {"users": {"password_hash"}}

_SLUG_SPACES_RE = re.compile(r"\s+")
_SLUG_INVALID_RE = re.compile(r"[^\w-]+", re.ASCII)
_SLUG_DASHES_RE = re.compile(r"-{2,}")


def _columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {column.key: column for column in mapper.columns}


def _sanitize_payload(model: type, table_name: str, payload: dict[str, Any], *, is_update: bool) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    columns = _columns_map(model)
    protected = PROTECTED_INPUT_FIELDS.get(table_name, set())
    mutable_columns = {name for name in columns.keys() if name not in SYSTEM_FIELDS and name not in protected}

    unknown_fields = sorted(set(payload.keys()) - mutable_columns)
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))

    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        column = columns[key]
        if value is None and not column.nullable:
            raise HTTPException(status_code=400, detail=f'Field "{key}" cannot be null')
        python_type = _python_type(column)
        if python_type is uuid.UUID and value is not None:
            value = _parse_uuid_or_400(value, key)
        elif python_type in (datetime, date) and isinstance(value, str):
            value = _parse_temporal_or_400(value, key, python_type)
        cleaned[key] = value

    if is_update:
        if not cleaned:
            raise HTTPException(status_code=400, detail="No fields to update")
        return cleaned

    required_missing: list[str] = []
    for name, column in columns.items():
        if name in SYSTEM_FIELDS or name in protected or column.nullable:
            continue
        if column.default is not None or column.server_default is not None:
            continue
        if name not in cleaned:
            required_missing.append(name)
    if required_missing:
        raise HTTPException(status_code=400, detail="Missing required fields: " + ", ".join(sorted(required_missing)))

    return cleaned


def _python_type(column: Any):
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _parse_uuid_or_400(value: Any, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f'Field "{field_name}" must be a UUID')


def _parse_temporal_or_400(value: str, field_name: str, python_type: type) -> Any:
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise HTTPException(status_code=400, detail=f'Field "{field_name}" must be an ISO date')
    return parsed.date() if python_type is date else parsed


def _pk_value(model: type, row_id: str) -> Any:
    pk = sa_inspect(model).primary_key
    if len(pk) != 1:
        raise HTTPException(status_code=400, detail="Only single-column primary keys are supported")
    if _python_type(pk[0]) is uuid.UUID:
        try:
            return uuid.UUID(str(row_id))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid identifier")
    return row_id


def _load_row_or_404(db: Session, model: type, row_id: str):
    entity = db.get(model, _pk_value(model, row_id))
    if entity is None:
        raise HTTPException(status_code=404, detail="Row not found")
    return entity


def _apply_user_fields(payload: dict[str, Any]) -> dict[str, Any]:
    data = dict(payload)
    if "password_hash" in data:
        raise HTTPException(status_code=400, detail='Field "password_hash" is read-only')
    if "password" in data:
        raw_password = str(data.pop("password") or "").strip()
        if not raw_password:
            raise HTTPException(status_code=400, detail="Password cannot be empty")
        data["password_hash"] = hash_password(raw_password)
    if "role" in data:
        role = str(data.get("role") or "").strip().upper()
        if role not in ALLOWED_USER_ROLES:
            raise HTTPException(status_code=400, detail="Invalid role")
        data["role"] = role
    if "email" in data:
        email = str(data.get("email") or "").strip().lower()
        if not email:
            raise HTTPException(status_code=400, detail="Email cannot be empty")
        data["email"] = email
    return data


def _slugify(value: str, fallback: str) -> str:
    slug = _SLUG_SPACES_RE.sub("-", str(value or "").strip().lower())
    slug = _SLUG_DASHES_RE.sub("-", _SLUG_INVALID_RE.sub("", slug)).strip("-")
    return slug or fallback


def _unique_slug(db: Session, model: type, base: str) -> str:
    column = getattr(model, "slug")
    max_len = getattr(_columns_map(model)["slug"].type, "length", None) or 255
    base = base[:max_len]
    taken = {
        value
        for (value,) in db.query(column).filter(column.startswith(base, autoescape=True)).all()
    }
    if base not in taken:
        return base
    for index in range(2, len(taken) + 2):
        suffix = f"-{index}"
        candidate = base[: max_len - len(suffix)].rstrip("-") + suffix
        if candidate not in taken:
            return candidate
    raise HTTPException(status_code=400, detail="Could not generate a unique slug")


def _prepare_payload(db: Session, model: type, table_name: str, payload: dict[str, Any], *, is_update: bool) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    data = dict(payload)
    if table_name == "users":
        data = _apply_user_fields(data)
        # The hash is derived here, so it bypasses the protected-field check.
        password_hash = data.pop("password_hash", None)
        if password_hash is None and not is_update:
            raise HTTPException(status_code=400, detail='Field "password" is required')
        cleaned = _sanitize_payload(model, table_name, data, is_update=is_update) if data or not is_update else {}
        if password_hash is not None:
            cleaned["password_hash"] = password_hash
        if not cleaned:
            raise HTTPException(status_code=400, detail="No fields to update")
        return cleaned

    source = SLUG_SOURCES.get(table_name)
    if not is_update and source and not str(data.get("slug") or "").strip():
        base = _slugify(str(data.get(source) or ""), table_name.rstrip("s"))
        data["slug"] = _unique_slug(db, model, base)
    return _sanitize_payload(model, table_name, data, is_update=is_update)
