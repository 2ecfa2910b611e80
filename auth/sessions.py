"""
auth/sessions.py -- Login, refresh rotation, logout and password change.

SessionManager is the only code that drives the per-user session state:

    NoSession (refresh_token IS NULL)  --login-->    Active (refresh_token = T)
    Active (T)                         --refresh-->  Active (T')   [T' != T]
    Active (T)                         --login-->    Active (T')   [old session ends]
    any                                --logout-->   NoSession

State lives in the credential store, not in this object. SessionManager
holds only its collaborators and can be shared across request threads.

Security invariants:
  [R1] A refresh token is accepted only while it is the stored value. The
       check and the rotation are one atomic store call (swap_refresh_token).
       A superseded token fails with TOKEN_REUSED and mints nothing.
  [C1] login() runs bcrypt exactly once whether or not the account exists.

Every failure is raised as an AuthError subclass (auth/errors.py). Nothing in
this module catches and discards an AuthError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import AuthError, ErrorKind
from auth.models import LoginResult, PublicUser, TokenPair, User
from auth.passwords import burn_dummy_check, hash_password
from auth.store import CredentialStore
from auth.tokens import KeyClass, TokenCodec

logger = logging.getLogger("sessiongate.auth")


class SessionManager:
    def __init__(self, store: CredentialStore, codec: TokenCodec) -> None:
        self._store = store
        self._codec = codec

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str, full_name: str = "") -> PublicUser:
        """Create a user with a bcrypt-hashed password. No session is started.

        Raises AuthError(USER_EXISTS) if the username or email is taken.
        """
        username = username.strip().lower()
        email = email.strip().lower()
        if self._store.exists(username, email):
            raise AuthError(ErrorKind.USER_EXISTS, f"username or email taken: {username!r}")

        user_id = self._store.create_user(
            User(
                username=username,
                email=email,
                full_name=full_name.strip(),
                hashed_password=hash_password(password),
            )
        )
        created = self._store.get_by_id(user_id)
        if created is None:
            raise AuthError(ErrorKind.UNKNOWN_USER, f"user {user_id} vanished after insert")
        logger.info("Registered user_id=%s", user_id)
        return created.public()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str) -> LoginResult:
        """Verify credentials and start a new session.

        identifier may be a username or an email address. A successful login
        overwrites any stored refresh token, ending the previous session.

        Raises:
            AuthError(NOT_FOUND):          no account matches identifier.
            AuthError(INVALID_CREDENTIAL): password does not match.
            StoreUnavailableError:         the store could not be reached.
        """
        user = self._store.find_by_identifier(identifier)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            burn_dummy_check(password)
            logger.info("Login failed: unknown identifier")
            raise AuthError(ErrorKind.NOT_FOUND, "no account for identifier")

        if not self._store.verify_password(user, password):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise AuthError(ErrorKind.INVALID_CREDENTIAL, f"password mismatch for user {user.id}")

        tokens = self._codec.issue_pair(user.id)
        if not self._store.update_refresh_token(user.id, tokens.refresh_token):
            raise AuthError(ErrorKind.UNKNOWN_USER, f"user {user.id} disappeared during login")

        logger.info("Login succeeded for user_id=%s", user.id)
        return LoginResult(tokens=tokens, user=user.public())

    # ------------------------------------------------------------------
    # Refresh (rotation)
    # ------------------------------------------------------------------

    def refresh(self, presented: str | None) -> TokenPair:
        """Exchange the current refresh token for a new pair [R1].

        Raises:
            AuthError(MISSING_TOKEN):  nothing was presented.
            TokenExpiredError / TokenSignatureError (INVALID_TOKEN):
                                       signature, expiry or token class failed.
            AuthError(UNKNOWN_USER):   the token's user no longer exists.
            AuthError(TOKEN_REUSED):   the token is not the stored value --
                                       superseded by rotation, replaced by a
                                       newer login, or cleared by logout.
        """
        if not presented:
            raise AuthError(ErrorKind.MISSING_TOKEN, "no refresh token presented")

        user_id = self._codec.verify(presented, KeyClass.REFRESH)

        user = self._store.get_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.UNKNOWN_USER, f"refresh token for missing user {user_id}")

        tokens = self._codec.issue_pair(user_id)
        # Single conditional write: compare against the stored value and rotate
        # in one step. A read-then-write here would let two concurrent
        # refreshes with the same token both succeed.
        if not self._store.swap_refresh_token(user_id, presented, tokens.refresh_token):
            logger.warning("Refresh token reuse detected for user_id=%s", user_id)
            raise AuthError(ErrorKind.TOKEN_REUSED, f"stale refresh token for user {user_id}")

        logger.info("Rotated refresh token for user_id=%s", user_id)
        return tokens

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, user_id: int) -> None:
        """Clear the stored refresh token. Idempotent.

        Access tokens already issued stay valid until they expire -- they are
        never persisted and cannot be revoked individually.
        """
        self._store.update_refresh_token(user_id, None)
        logger.info("Logged out user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        """Replace the password hash after checking the old password.

        The active session is left as-is (see DESIGN.md, "password change and
        live sessions").

        Raises:
            AuthError(NOT_FOUND):          user_id does not exist.
            AuthError(INVALID_CREDENTIAL): old_password does not match.
        """
        user = self._store.get_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"no user {user_id}")
        if not self._store.verify_password(user, old_password):
            logger.info("Password change rejected for user_id=%s", user_id)
            raise AuthError(ErrorKind.INVALID_CREDENTIAL, f"old password mismatch for user {user_id}")

        if not self._store.update_password_hash(user_id, hash_password(new_password)):
            raise AuthError(ErrorKind.NOT_FOUND, f"user {user_id} disappeared during password change")
        logger.info("Password changed for user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Access token -> identity
    # ------------------------------------------------------------------

    def current_user(self, access_token: str | None) -> PublicUser:
        """Resolve an access token to the user it was issued for.

        Access tokens are checked cryptographically only; the stored refresh
        token plays no part here.
        """
        if not access_token:
            raise AuthError(ErrorKind.MISSING_TOKEN, "no access token presented")
        user_id = self._codec.verify(access_token, KeyClass.ACCESS)
        user = self._store.get_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.UNKNOWN_USER, f"access token for missing user {user_id}")
        return user.public()
