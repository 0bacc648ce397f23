from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.collections.service import query_collection_service
from app.core.deps import get_query_params
from app.db.session import get_db
from app.schemas.query import QueryParams

router = APIRouter()


@router.get("/{collection}")
async def query_public_collection(
    collection: str,
    query: QueryParams = Depends(get_query_params),
    db: Session = Depends(get_db),
):
    return await query_collection_service(collection, query, db, public=True)
