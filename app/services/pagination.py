from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from app.core.config import settings
from app.core.errors import ExecutionTimeout, QueryCancelled
from app.schemas.query import PageMeta, PaginatedResult, QueryParams
from app.services.query_compiler import QueryPlan, compile_query
from app.services.query_predicates import Predicate

_LOG = logging.getLogger("app.query")


class CollectionHandle(Protocol):
    name: str

    def field_names(self) -> Sequence[str]: ...

    def relation_names(self) -> Sequence[str]: ...

    async def execute(self, plan: QueryPlan) -> tuple[Sequence[Any], int]: ...

    def cancel(self) -> None: ...


@dataclass(frozen=True)
class PaginateOptions:
    default_search_fields: Sequence[str] = ()
    mandatory: Optional[Predicate | Mapping[str, Any]] = None
    additional_relations: Sequence[str] = ()
    timeout: Optional[float] = None
    serialize: Optional[Callable[[Any], Any]] = None


def build_page_meta(page: int, limit: int, total: int) -> PageMeta:
    total_pages = math.ceil(total / limit) if total > 0 else 0
    return PageMeta(
        current_page=page,
        items=limit,
        total_items=total,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


async def paginate(
    handle: CollectionHandle,
    query: QueryParams,
    options: PaginateOptions | None = None,
) -> PaginatedResult[Any]:
    """Compile ``query`` for ``handle``, run it once and wrap the page.

    Rows and total come from a single ``execute`` call against the same predicate.
    Timeouts and caller cancellation cancel the handle and are never retried here.
    """
    options = options or PaginateOptions()
    plan = compile_query(
        query,
        collection=handle.name,
        metadata=handle,
        default_search_fields=options.default_search_fields,
        mandatory=options.mandatory,
        additional_relations=options.additional_relations,
    )
    timeout = settings.QUERY_TIMEOUT_SECONDS if options.timeout is None else options.timeout
    try:
        rows, total = await asyncio.wait_for(handle.execute(plan), timeout=timeout)
    except asyncio.TimeoutError:
        handle.cancel()
        _LOG.warning("query on %s timed out after %.2fs", handle.name, timeout)
        raise ExecutionTimeout(f'Query on "{handle.name}" timed out')
    except asyncio.CancelledError:
        handle.cancel()
        _LOG.info("query on %s cancelled by caller", handle.name)
        raise QueryCancelled("Query cancelled")

    data = [options.serialize(row) for row in rows] if options.serialize else list(rows)
    return PaginatedResult[Any](data=data, meta=build_page_meta(query.page, query.limit, total))
