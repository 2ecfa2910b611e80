"""
auth/errors.py -- Closed error taxonomy for the credential and session core.

Every failure in auth/ is raised as an AuthError carrying exactly one ErrorKind.
The set of kinds is closed: callers can switch on exc.kind exhaustively, and
the API layer maps each kind to one HTTP status and one public message in a
single table (api/main.py).

public_message is deliberately identical for NOT_FOUND and INVALID_CREDENTIAL
so a client cannot tell "no such account" from "wrong password" [C1].

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_CREDENTIAL = "invalid_credential"
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    TOKEN_REUSED = "token_reused"
    UNKNOWN_USER = "unknown_user"
    STORE_UNAVAILABLE = "store_unavailable"
    USER_EXISTS = "user_exists"


_PUBLIC_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "Invalid credentials.",
    ErrorKind.INVALID_CREDENTIAL: "Invalid credentials.",
    ErrorKind.MISSING_TOKEN: "Authentication token required.",
    ErrorKind.INVALID_TOKEN: "Token is invalid or expired.",
    ErrorKind.TOKEN_REUSED: "Session is no longer valid. Please log in again.",
    ErrorKind.UNKNOWN_USER: "Session is no longer valid. Please log in again.",
    ErrorKind.STORE_UNAVAILABLE: "Service temporarily unavailable.",
    ErrorKind.USER_EXISTS: "A user with that username or email already exists.",
}


class AuthError(Exception):
    """Base class for every failure the auth core reports.

    The message passed to the constructor is for logs only. Anything shown to
    an end user must come from public_message.

    Subclasses fix their kind as a class attribute. The base class has none,
    so a bare AuthError() without a kind is a programming error.
    """

    kind: ErrorKind | None = None

    def __init__(self, kind: ErrorKind | None = None, message: str = "") -> None:
        if kind is not None:
            self.kind = kind
        if self.kind is None:
            raise TypeError(f"{type(self).__name__} requires an ErrorKind")
        super().__init__(message or self.kind.value)

    @property
    def public_message(self) -> str:
        return _PUBLIC_MESSAGES[self.kind]

    @property
    def retryable(self) -> bool:
        """Only store outages are worth retrying. Everything else is terminal."""
        return self.kind is ErrorKind.STORE_UNAVAILABLE


class TokenSignatureError(AuthError):
    """Bad signature, malformed token, wrong token class, or missing claims."""

    kind = ErrorKind.INVALID_TOKEN


class TokenExpiredError(AuthError):
    kind = ErrorKind.INVALID_TOKEN


class StoreUnavailableError(AuthError):
    kind = ErrorKind.STORE_UNAVAILABLE
