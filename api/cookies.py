"""
api/cookies.py -- Session cookie helpers.

Both cookies are written with the same flags:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  secure:        only sent over HTTPS (SECURE_COOKIES, on by default).
  samesite:      COOKIE_SAMESITE, "lax" by default -- cookie not sent on
                 cross-site POST, which covers CSRF for the refresh endpoint.
  max_age:       matches the token expiry so cookie and token expire together.

Clearing uses the same flags; browsers ignore a delete whose attributes do not
match the original cookie.
"""

from __future__ import annotations

from starlette.responses import Response

from auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE
from auth.models import TokenPair
from core.config import get_settings


def _flags() -> dict:
    settings = get_settings()
    return {
        "httponly": True,
        "secure": settings.secure_cookies,
        "samesite": settings.cookie_samesite,
        "path": "/",
    }


def set_session_cookies(response: Response, tokens: TokenPair) -> None:
    settings = get_settings()
    flags = _flags()
    response.set_cookie(
        ACCESS_COOKIE, value=tokens.access_token, max_age=settings.access_token_expire_seconds, **flags
    )
    response.set_cookie(
        REFRESH_COOKIE, value=tokens.refresh_token, max_age=settings.refresh_token_expire_seconds, **flags
    )


def clear_session_cookies(response: Response) -> None:
    flags = _flags()
    response.delete_cookie(ACCESS_COOKIE, **flags)
    response.delete_cookie(REFRESH_COOKIE, **flags)
