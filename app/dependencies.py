"""
ClaimFlow - FastAPI Dependencies

Shared dependencies for authentication and database sessions.

The session provider issues JWT access tokens whose ``sub`` claim is the
user id. A token is accepted from:
1. Authorization: Bearer <token> header
2. access_token cookie
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.utils.error_handling import AuthenticationException
from app.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionUser:
    """The authenticated actor of a request."""
    user_id: uuid.UUID


def _extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials:
        return credentials.credentials

    token = request.cookies.get("access_token")
    if token and token.startswith("Bearer "):
        token = token[7:]
    return token


async def get_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[SessionUser]:
    """
    Resolve the session from the request.

    Returns None for a missing, invalid or expired token, or a token
    whose subject is not a user id.
    """
    token = _extract_token(request, credentials)
    if not token:
        return None

    payload = verify_access_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    try:
        return SessionUser(user_id=uuid.UUID(str(user_id)))
    except ValueError:
        return None


async def require_session(
    session: Optional[SessionUser] = Depends(get_session),
) -> SessionUser:
    """
    Require an authenticated session.

    Raises:
        AuthenticationException: If no valid session is present
    """
    if session is None:
        raise AuthenticationException()
    return session
