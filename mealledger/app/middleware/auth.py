"""Caller identity at the service boundary.

Authentication happens upstream. The gateway proves itself with a shared
bearer token and forwards the authenticated caller in headers:

    Authorization: Bearer <INTERNAL_AUTH_TOKEN>
    X-Caller-Id:   <government, school or student id>
    X-Caller-Role: government | school | student
"""

import hmac
import os
from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException, Request

GOVERNMENT = "government"
SCHOOL = "school"
STUDENT = "student"
ROLES = frozenset((GOVERNMENT, SCHOOL, STUDENT))

CALLER_ID_HEADER = "X-Caller-Id"
CALLER_ROLE_HEADER = "X-Caller-Role"


@dataclass(frozen=True)
class CallerIdentity:
    caller_id: str
    role: str


def get_internal_token() -> str:
    """Get the gateway token from the INTERNAL_AUTH_TOKEN environment variable.

    The token is cached on first access to avoid repeated environment
    variable lookups.

    Raises:
        ValueError: If INTERNAL_AUTH_TOKEN environment variable is not set
    """
    if not hasattr(get_internal_token, "_cached_token"):
        token = os.getenv("INTERNAL_AUTH_TOKEN")
        if token is not None:
            # Normalize accidental whitespace/newline from env/secret stores.
            token = token.strip()
        if not token:
            raise ValueError(
                "INTERNAL_AUTH_TOKEN environment variable is not set. "
                "Please set a secure token before starting the server."
            )
        get_internal_token._cached_token = token
    return get_internal_token._cached_token


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def authenticate(request: Request) -> CallerIdentity:
    """Validate the gateway token and read the forwarded caller.

    Raises:
        HTTPException: 401 if the token or caller headers are missing or invalid
    """
    token = get_bearer_token(request) or ""
    expected_token = get_internal_token()

    # Always compare to avoid timing differences between missing and wrong tokens
    if not hmac.compare_digest(token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid or missing gateway token")

    caller_id = request.headers.get(CALLER_ID_HEADER, "").strip()
    role = request.headers.get(CALLER_ROLE_HEADER, "").strip().lower()
    if not caller_id or role not in ROLES:
        raise HTTPException(status_code=401, detail="Missing or invalid caller identity")

    return CallerIdentity(caller_id=caller_id, role=role)


def require_role(*roles: str) -> Callable[[Request], CallerIdentity]:
    """Dependency factory admitting only callers with one of ``roles``.

    Usage:
        @router.post("/claims")
        async def claim(caller: CallerIdentity = Depends(require_role(SCHOOL))):
            ...

    Raises:
        HTTPException: 401 from authenticate, 403 for a role not allowed here
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> CallerIdentity:
        caller = authenticate(request)
        if caller.role not in allowed:
            raise HTTPException(
                status_code=403, detail="Caller role is not allowed for this endpoint"
            )
        request.state.caller = caller
        return caller

    return dependency
