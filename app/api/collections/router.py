from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_query_params
from app.db.session import get_db
from app.schemas.query import QueryParams

from .service import (
    create_row_service,
    delete_row_service,
    get_row_service,
    list_collections_meta_service,
    query_collection_service,
    update_row_service,
)

router = APIRouter()


@router.get("/meta")
def list_collections_meta():
    return list_collections_meta_service()


@router.get("/{collection}")
async def query_collection(
    collection: str,
    query: QueryParams = Depends(get_query_params),
    db: Session = Depends(get_db),
):
    return await query_collection_service(collection, query, db)


@router.get("/{collection}/{row_id}")
async def get_row(
    collection: str,
    row_id: str,
    query: QueryParams = Depends(get_query_params),
    db: Session = Depends(get_db),
):
    return await get_row_service(collection, row_id, query, db)


@router.post("/{collection}", status_code=201)
def create_row(collection: str, payload: dict[str, Any], db: Session = Depends(get_db)):
    return create_row_service(collection, payload, db)


@router.patch("/{collection}/{row_id}")
def update_row(collection: str, row_id: str, payload: dict[str, Any], db: Session = Depends(get_db)):
    return update_row_service(collection, row_id, payload, db)


@router.delete("/{collection}/{row_id}")
def delete_row(collection: str, row_id: str, db: Session = Depends(get_db)):
    return delete_row_service(collection, row_id, db)
