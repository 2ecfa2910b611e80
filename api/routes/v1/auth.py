"""
api/routes/v1/auth.py -- Session lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create an account (no session started)
  POST /api/v1/auth/login             -- password login; sets both cookies
  POST /api/v1/auth/refresh           -- rotate refresh token; sets both cookies
  POST /api/v1/auth/logout            -- clear stored refresh token + cookies
  POST /api/v1/auth/change-password   -- verify old password, store new hash
  GET  /api/v1/auth/me                -- current user (requires access token)

Handlers are thin: validate input (api/models.py), call SessionManager, shape
the response. Failures propagate as AuthError and are rendered by the single
handler in api/main.py -- handlers never build error responses themselves.

Security:
  [C1] login goes through SessionManager.login(), which equalizes timing.
  [M5] Cache-Control: no-store on every response that carries tokens.
  [R1] refresh never falls back to a read-then-write check; it relies on the
       store's compare-and-swap.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.cookies import clear_session_cookies, set_session_cookies
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import REFRESH_COOKIE, get_current_user, get_session_manager
from auth.models import PublicUser, TokenPair
from auth.sessions import SessionManager
from core.config import get_settings

# Auth policy:
# - POST /auth/register, /auth/login, /auth/refresh: public
# - POST /auth/logout, /auth/change-password, GET /auth/me: access token required
router = APIRouter()


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=get_settings().access_token_expire_seconds,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, sessions: SessionManager = Depends(get_session_manager)) -> UserResponse:
    """Create a new account. Log in separately to obtain tokens."""
    user = sessions.register(body.username, body.email, body.password, body.full_name)
    return UserResponse.from_public(user)


@router.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest, sessions: SessionManager = Depends(get_session_manager)) -> JSONResponse:
    """Authenticate by username or email; return tokens and set both cookies.

    Wrong identifier and wrong password produce the same 401 body.
    """
    result = sessions.login(body.identifier, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user=UserResponse.from_public(result.user),
            tokens=_token_response(result.tokens),
        ).model_dump(),
    )
    set_session_cookies(resp, result.tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    body: RefreshRequest | None = None,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Rotate the refresh token. Cookie first, JSON body as fallback."""
    presented = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    tokens = sessions.refresh(presented)
    resp = JSONResponse(status_code=200, content=_token_response(tokens).model_dump())
    set_session_cookies(resp, tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """End the session: clear the stored refresh token and both cookies."""
    sessions.logout(current_user.id)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookies(resp)
    return resp


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> MessageResponse:
    """Replace the caller's password after checking the old one."""
    sessions.change_password(current_user.id, body.old_password, body.new_password)
    return MessageResponse(message="Password changed.")


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: PublicUser = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_public(current_user)
