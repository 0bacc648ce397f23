from __future__ import annotations

from fastapi import HTTPException


class QueryError(HTTPException):
    """Base for every failure surfaced by the query pipeline."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(status_code=type(self).status_code, detail=detail)


class QueryValidationError(QueryError):
    """Malformed input rejected before anything is executed."""


class InvalidQuery(QueryError):
    """The plan references a field or relation the collection does not have."""


class ExecutionTimeout(QueryError):
    status_code = 504


class QueryCancelled(QueryError):
    status_code = 499


class EngineFailure(QueryError):
    status_code = 500
