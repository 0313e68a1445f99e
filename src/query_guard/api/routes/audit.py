"""
Audit Routes
============

Read access to the security audit trail for privileged roles.
"""

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from query_guard.api.identity import Caller, get_caller
from query_guard.api.schemas import AuditEntryResponse, AuditQueryResponse, ErrorResponse
from query_guard.models import ViolationType
from query_guard.roles import is_privileged, is_superadmin
from query_guard.security.audit_log import AuditEventType, AuditFilter, AuditLogger

router = APIRouter(prefix="/api/v1", tags=["Audit"])


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.engine.audit


@router.get(
    "/audit",
    response_model=AuditQueryResponse,
    responses={403: {"model": ErrorResponse, "description": "Role may not read the audit trail"}},
    summary="Query the security audit trail",
)
async def query_audit(
    caller: Annotated[Caller, Depends(get_caller)],
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
    event_type: Optional[AuditEventType] = None,
    violation_type: Optional[ViolationType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> AuditQueryResponse:
    """
    Filtered audit entries, most recent first.

    Managers and admins only see their own tenant; SUPERADMIN may pass
    any ``tenant_id``. Dates without a timezone are rejected.
    """
    if not is_privileged(caller.role):
        raise HTTPException(
            status_code=403,
            detail={"error": "Forbidden", "message": "Audit access requires a management role"},
        )
    for value in (start, end):
        if value is not None and value.tzinfo is None:
            raise HTTPException(
                status_code=422,
                detail={"error": "InvalidDate", "message": "start and end must include a timezone"},
            )

    scope = tenant_id if is_superadmin(caller.role) else caller.tenant_id
    filters = AuditFilter(
        tenant_id=scope,
        user_id=user_id,
        event_type=event_type,
        violation_type=violation_type,
        start=start,
        end=end,
    )
    entries = [
        AuditEntryResponse(**{k: v for k, v in entry.to_dict().items() if k in AuditEntryResponse.model_fields})
        for entry in audit.query(filters, limit=limit)
    ]
    return AuditQueryResponse(entries=entries, count=len(entries))
