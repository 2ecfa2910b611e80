"""
auth/tokens.py -- JWT access/refresh token codec.

Security design decisions:
  JWT: python-jose with HS256. Every token carries user_id, typ, jti, iat and
       exp. Access and refresh tokens are signed with DIFFERENT secrets, so a
       leaked access secret cannot mint refresh tokens [M8]. The typ claim is
       checked as well, so a token presented to the wrong verifier fails even
       if both secrets were ever configured identically by mistake.

  jti: secrets.token_urlsafe(16) per token. Two refresh tokens for the same
       user issued in the same second are still different strings, which the
       rotation check in auth/sessions.py depends on.

  Failures: verify() raises TokenExpiredError or TokenSignatureError (both
       ErrorKind.INVALID_TOKEN). It never returns a partial payload.

TokenCodec holds only immutable configuration, so one instance can be shared
by every request thread.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpiredError, TokenSignatureError
from auth.models import TokenPair
from core.config import Settings, get_settings

_ALGORITHM = "HS256"


class KeyClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenCodec:
    """Issue and verify signed, expiring tokens for one user identity claim.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(user_id=7)
        codec.verify(pair.refresh_token, KeyClass.REFRESH)  # -> 7
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        leeway_seconds: int = 0,
    ) -> None:
        self._secrets = {KeyClass.ACCESS: access_secret, KeyClass.REFRESH: refresh_secret}
        self._ttls = {KeyClass.ACCESS: access_ttl, KeyClass.REFRESH: refresh_ttl}
        self._leeway = leeway_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            leeway_seconds=settings.token_leeway_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _issue(self, user_id: int, key_class: KeyClass) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "typ": key_class.value,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + self._ttls[key_class],
        }
        return jwt.encode(payload, self._secrets[key_class], algorithm=_ALGORITHM)

    def issue_access_token(self, user_id: int) -> str:
        """Short-lived token proving identity for the request window."""
        return self._issue(user_id, KeyClass.ACCESS)

    def issue_refresh_token(self, user_id: int) -> str:
        """Long-lived token whose only use is minting a new pair."""
        return self._issue(user_id, KeyClass.REFRESH)

    def issue_pair(self, user_id: int) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user_id),
            refresh_token=self.issue_refresh_token(user_id),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, key_class: KeyClass) -> int:
        """Check signature, expiry and token class. Return the embedded user_id.

        Raises:
            TokenExpiredError:   signature is good but exp has passed.
            TokenSignatureError: anything else -- bad signature, garbage input,
                                 wrong typ, or a missing/non-integer user_id.
        """
        try:
            payload = jwt.decode(
                token,
                self._secrets[key_class],
                algorithms=[_ALGORITHM],
                options={"leeway": self._leeway},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError(message=f"{key_class.value} token expired") from exc
        except JWTError as exc:
            raise TokenSignatureError(message=f"{key_class.value} token rejected: {exc}") from exc

        if payload.get("typ") != key_class.value:
            raise TokenSignatureError(message=f"expected {key_class.value} token, got {payload.get('typ')!r}")
        user_id = payload.get("user_id")
        # bool is an int subclass; a token claiming user_id=true is not ours.
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise TokenSignatureError(message="token has no usable user_id claim")
        return user_id


@lru_cache
def get_token_codec() -> TokenCodec:
    """Process-wide codec built from the Settings singleton."""
    return TokenCodec.from_settings(get_settings())
