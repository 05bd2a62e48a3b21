"""Authentication and session package."""

from veryfin.auth.gate import (
    AuthFailureReason,
    AuthGate,
    AuthResult,
    UnauthenticatedError,
)
from veryfin.auth.passwords import hash_password, verify_password
from veryfin.auth.sessions import SessionExpiredError, SessionManager

__all__ = [
    "AuthFailureReason",
    "AuthGate",
    "AuthResult",
    "SessionExpiredError",
    "SessionManager",
    "UnauthenticatedError",
    "hash_password",
    "verify_password",
]
