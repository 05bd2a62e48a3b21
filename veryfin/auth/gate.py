"""
Auth Gate

DESIGN DECISION: One place decides who the caller is.
Every flow below this layer receives a plain user_id that has
already been checked; nothing downstream reads cookies or tokens.

FLOWS:
1. Register -> hash password -> store user -> audit
2. Authenticate -> look up by email -> verify hash -> AuthResult
3. Start session -> opaque token for the cookie
4. Resolve session -> user_id, or UnauthenticatedError
5. Logout -> session removed

AuthResult records why a login failed, but the HTTP layer never
says whether the email or the password was wrong.
"""

from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from veryfin.audit import AuditLogger
from veryfin.auth.passwords import hash_password, verify_password
from veryfin.auth.sessions import SessionExpiredError, SessionManager
from veryfin.models.finance import RegisterRequest, SessionRecord, User
from veryfin.services.storage import DuplicateError, UserStorageInterface
from veryfin.validation import ValidationFailedError, parse_payload


INVALID_CREDENTIALS = "Invalid credentials"


class AuthFailureReason(str, Enum):
    UNKNOWN_EMAIL = "unknown_email"
    BAD_PASSWORD = "bad_password"


class UnauthenticatedError(Exception):
    """No valid session (missing, unknown or expired token)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthResult(BaseModel):
    """Outcome of a credential check."""

    success: bool
    user: Optional[User] = None
    failure_reason: Optional[AuthFailureReason] = None


class AuthGate:
    """
    Registration, login and session resolution.

    Args:
        users: User storage
        sessions: Session manager
        audit_logger: Optional audit sink
    """

    def __init__(
        self,
        users: UserStorageInterface,
        sessions: SessionManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._users = users
        self._sessions = sessions
        self._audit_logger = audit_logger

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def register(
        self,
        data: Union[RegisterRequest, dict],
        correlation_id: Optional[UUID] = None,
    ) -> User:
        """
        Create an account.

        Raises:
            ValidationFailedError: Bad email or password
            DuplicateError: Email already registered
        """
        try:
            request = parse_payload(RegisterRequest, data, "register")
        except ValidationFailedError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    operation="register",
                    issues=e.issues_as_dicts(),
                    correlation_id=correlation_id,
                )
            raise

        if await self._users.get_user_by_email(request.email) is not None:
            raise DuplicateError("Email already registered")

        user = User(
            email=request.email,
            password_hash=hash_password(request.password),
            first_name=request.first_name,
            last_name=request.last_name,
        )
        user = await self._users.create_user(user)

        if self._audit_logger:
            await self._audit_logger.log_user_registered(
                user_id=user.id,
                email=user.email,
                correlation_id=correlation_id,
            )

        return user

    async def authenticate(
        self,
        email: str,
        password: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuthResult:
        """Check credentials. Never raises for a bad email or password."""
        user = await self._users.get_user_by_email((email or "").strip())

        if user is None:
            reason = AuthFailureReason.UNKNOWN_EMAIL
        elif not verify_password(password or "", user.password_hash):
            reason = AuthFailureReason.BAD_PASSWORD
        else:
            reason = None

        if reason is not None:
            if self._audit_logger:
                await self._audit_logger.log_login_failed(
                    email=email,
                    reason=reason.value,
                    correlation_id=correlation_id,
                )
            return AuthResult(success=False, failure_reason=reason)

        if self._audit_logger:
            await self._audit_logger.log_login_succeeded(
                user_id=user.id,
                correlation_id=correlation_id,
            )
        return AuthResult(success=True, user=user)

    async def start_session(self, user: User) -> SessionRecord:
        return await self._sessions.create(user.id)

    async def resolve_session(
        self,
        token: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> User:
        """
        Turn a session token into its user.

        Raises:
            UnauthenticatedError: Missing, unknown or expired token,
                or the user no longer exists
        """
        try:
            session = await self._sessions.resolve(token)
        except SessionExpiredError as e:
            if self._audit_logger:
                await self._audit_logger.log_session_expired(
                    user_id=e.user_id,
                    correlation_id=correlation_id,
                )
            raise UnauthenticatedError("Session expired") from e

        if session is None:
            raise UnauthenticatedError()

        user = await self._users.get_user_by_id(session.user_id)
        if user is None:
            await self._sessions.revoke(token)
            raise UnauthenticatedError()
        return user

    async def logout(
        self,
        token: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """End the session. Logging out without one is not an error."""
        session = await self._sessions.revoke(token)
        if self._audit_logger:
            await self._audit_logger.log_logged_out(
                user_id=session.user_id if session else None,
                correlation_id=correlation_id,
            )
