from fastapi import Request

from app.schemas.query import QueryParams, parse_query_params


def get_query_params(request: Request) -> QueryParams:
    return parse_query_params(request.query_params)
