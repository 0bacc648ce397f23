from __future__ import annotations

import importlib
import pkgutil
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping, Optional

from fastapi import HTTPException

import app.models as models_pkg
from app.db.session import Base

SYSTEM_FIELDS = {"id", "created_at", "updated_at"}


@dataclass(frozen=True)
class CollectionConfig:
    default_search_fields: tuple[str, ...] = ()
    hidden_fields: frozenset[str] = frozenset()
    # Mandatory constraints applied to the public listing; None keeps the collection private.
    public_scope: Optional[Mapping[str, Any]] = None


COLLECTIONS: dict[str, CollectionConfig] = {
    "users": CollectionConfig(hidden_fields=frozenset({"password_hash"})),
    "categories": CollectionConfig(public_scope={}),
    "blogs": CollectionConfig(public_scope={"published": True}),
    "events": CollectionConfig(
        default_search_fields=("title", "description", "location"),
        public_scope={"published": True},
    ),
    "resources": CollectionConfig(
        default_search_fields=("title", "description"),
        public_scope={"published": True},
    ),
}


def normalize_collection_name(name: str) -> str:
    raw = (name or "").strip().replace("-", "_")
    if not raw:
        return ""
    chars: list[str] = []
    for index, ch in enumerate(raw):
        if ch.isupper() and index > 0 and raw[index - 1].isalnum() and raw[index - 1] != "_":
            chars.append("_")
        chars.append(ch.lower())
    return "".join(chars)


@lru_cache(maxsize=1)
def collection_model_map() -> dict[str, type]:
    for module in pkgutil.iter_modules(models_pkg.__path__):
        if module.name.startswith("_"):
            continue
        importlib.import_module(f"{models_pkg.__name__}.{module.name}")
    return {
        mapper.class_.__tablename__: mapper.class_
        for mapper in Base.registry.mappers
        if getattr(mapper.class_, "__tablename__", None) in COLLECTIONS
    }


def resolve_collection(name: str) -> tuple[str, type]:
    normalized = normalize_collection_name(name)
    model = collection_model_map().get(normalized)
    if model is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    return normalized, model


def collection_config(name: str) -> CollectionConfig:
    return COLLECTIONS.get(name) or CollectionConfig()


def hidden_response_fields(name: str) -> frozenset[str]:
    return collection_config(name).hidden_fields
