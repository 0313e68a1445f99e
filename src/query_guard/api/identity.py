"""
Caller Identity
===============

Authentication happens upstream; the gateway forwards the authenticated
tenant, user and role in trusted headers. This dependency turns those
headers into a ``Caller`` and rejects requests that lack them.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Header, HTTPException, Request

from query_guard.roles import UserRole

TENANT_HEADER = "X-Tenant-ID"
USER_HEADER = "X-User-ID"
ROLE_HEADER = "X-User-Role"
RATE_LIMITED_HEADER = "X-Rate-Limited"


@dataclass(frozen=True)
class Caller:
    """Authenticated requester as asserted by the gateway."""

    tenant_id: str
    user_id: str
    role: UserRole
    rate_limited: bool = False
    ip_address: Optional[str] = None


class TrustedHeaderIdentity:
    """
    Header-based identity dependency.

    Raises 401 when identity headers are missing and 400 for an unknown
    role.
    """

    async def __call__(
        self,
        request: Request,
        tenant_id: Annotated[Optional[str], Header(alias=TENANT_HEADER)] = None,
        user_id: Annotated[Optional[str], Header(alias=USER_HEADER)] = None,
        role: Annotated[Optional[str], Header(alias=ROLE_HEADER)] = None,
        rate_limited: Annotated[Optional[str], Header(alias=RATE_LIMITED_HEADER)] = None,
    ) -> Caller:
        missing = [
            name
            for name, value in ((TENANT_HEADER, tenant_id), (USER_HEADER, user_id), (ROLE_HEADER, role))
            if not value
        ]
        if missing:
            raise HTTPException(
                status_code=401,
                detail={
                    "error": "AuthenticationRequired",
                    "message": f"Missing identity headers: {', '.join(missing)}",
                },
            )

        try:
            parsed_role = UserRole.parse(role)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail={"error": "InvalidRole", "message": f"Unknown role: {role}"},
            ) from None

        caller = Caller(
            tenant_id=tenant_id,
            user_id=user_id,
            role=parsed_role,
            rate_limited=(rate_limited or "").strip().lower() in ("1", "true", "yes"),
            ip_address=request.client.host if request.client else None,
        )
        request.state.caller = caller
        return caller


get_caller = TrustedHeaderIdentity()
