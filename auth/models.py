"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store and the session manager do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A user record as persisted by the credential store.

    username and email are stored lower-cased so lookups are case-insensitive.

    refresh_token holds the single live refresh token for this account, or
    None when no session is active. It is written only by login and refresh
    and cleared only by logout -- one active session per account.
    """

    username: str
    email: str
    hashed_password: str
    full_name: str = ""
    id: int | None = None
    refresh_token: str | None = None
    created_at: str | None = None

    def public(self) -> PublicUser:
        """Project to the fields that may leave the auth core."""
        return PublicUser(
            id=self.id,
            username=self.username,
            email=self.email,
            full_name=self.full_name,
            created_at=self.created_at or "",
        )


@dataclass(frozen=True)
class PublicUser:
    """Identity fields safe to return to clients. No hash, no refresh token."""

    id: int
    username: str
    email: str
    full_name: str
    created_at: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LoginResult:
    tokens: TokenPair
    user: PublicUser
