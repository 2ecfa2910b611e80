"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are looked up in priority order:
  1. accessToken cookie -- set by the login and refresh responses.
  2. Authorization: Bearer <token> header -- API clients.

get_current_user() raises AuthError on any failure; api/main.py turns that
into a 401 with the standard error envelope.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import PublicUser
from auth.sessions import SessionManager

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def extract_access_token(request: Request) -> str | None:
    """Return the access token from the cookie or Bearer header, if any."""
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_current_user(request: Request) -> PublicUser:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    sessions = get_session_manager(request)
    return sessions.current_user(extract_access_token(request))
