"""Admin guard for the live-session inspection APIs.

  ADMIN_API_KEY set + valid token   → allow
  ADMIN_API_KEY set + wrong/missing → 401
  ADMIN_API_KEY empty + DEBUG=true  → allow (local dev)
  ADMIN_API_KEY empty + DEBUG=false → 403 (locked in production)

HTTP callers send ``Authorization: Bearer <key>``; the debug WebSocket
takes ``?token=<key>`` because browsers cannot set headers on it.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Query, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from receptionist.config import settings

log = logging.getLogger("receptionist.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def admin_denial(token: Optional[str]) -> Optional[int]:
    """Return the HTTP status to refuse with, or None to allow."""
    key = settings.admin_api_key
    if not key:
        return None if settings.debug else status.HTTP_403_FORBIDDEN
    if not token or not secrets.compare_digest(token, key):
        return status.HTTP_401_UNAUTHORIZED
    return None


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency for HTTP admin endpoints."""
    denial = admin_denial(credentials.credentials if credentials else None)
    if denial == status.HTTP_403_FORBIDDEN:
        raise HTTPException(
            status_code=denial,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )
    if denial == status.HTTP_401_UNAUTHORIZED:
        raise HTTPException(
            status_code=denial,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin_ws(
    websocket: WebSocket,
    token: str = Query(default=""),
) -> bool:
    """Check a WebSocket's ``?token=``; closes the socket and returns False if denied."""
    denial = admin_denial(token)
    if denial is None:
        return True
    code, reason = (
        (4003, "Admin API key not configured")
        if denial == status.HTTP_403_FORBIDDEN
        else (4001, "Unauthorized")
    )
    log.warning("Debug WebSocket refused: %s", reason)
    await websocket.close(code=code, reason=reason)
    return False
