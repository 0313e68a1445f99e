"""
Query Routes
============

Main API endpoint: natural-language question in, safe answer out.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from query_guard.api.identity import Caller, get_caller
from query_guard.api.schemas import ErrorResponse, QueryRequest, QueryResponse
from query_guard.engine import QuerySafetyEngine
from query_guard.roles import is_privileged

router = APIRouter(prefix="/api/v1", tags=["Query"])


def get_engine(request: Request) -> QuerySafetyEngine:
    """Dependency to get the configured engine from app state."""
    return request.app.state.engine


@router.post(
    "/query",
    response_model=QueryResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing identity headers"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Answer a natural language question",
    description="Turns a question into tenant-scoped, read-only SQL and returns a sanitized answer",
)
async def process_query(
    body: QueryRequest,
    request: Request,
    caller: Annotated[Caller, Depends(get_caller)],
    engine: Annotated[QuerySafetyEngine, Depends(get_engine)],
) -> QueryResponse:
    """
    Process a question for the calling tenant user.

    Blocked and failed questions are ordinary 200 responses with
    ``metadata.blocked`` or a fallback answer; only unexpected faults
    produce an error status.
    """
    result = await engine.process_query(
        body.question,
        tenant_id=caller.tenant_id,
        user_id=caller.user_id,
        role=caller.role,
        ip_address=caller.ip_address,
        rate_limited=caller.rate_limited,
        language=body.language,
    )

    data = result.to_dict()
    if not is_privileged(caller.role):
        data["sql"] = None
    return QueryResponse(**data, request_id=request.state.request_id)
