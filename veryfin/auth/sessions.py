"""
Session Manager

DESIGN DECISION: Sessions live server-side; the client only ever holds
an opaque random token in a cookie.

LIFETIME:
- One TTL, taken from SessionSettings
- Sliding: every successful resolve pushes expiry out by a full TTL
- An expired session is deleted the first time it is presented
"""

import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from veryfin.config import get_settings
from veryfin.models.finance import SessionRecord, utcnow
from veryfin.services.storage import SessionStorageInterface


class SessionExpiredError(Exception):
    """A known session token was presented after its expiry."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Session expired")


class SessionManager:
    """
    Issues, resolves and revokes login sessions.

    Args:
        storage: Where session records are kept
        ttl: Session lifetime (defaults to the configured TTL)
        now_provider: Clock, overridable in tests
    """

    def __init__(
        self,
        storage: SessionStorageInterface,
        ttl: Optional[timedelta] = None,
        now_provider: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._ttl = ttl or timedelta(seconds=get_settings().session.ttl_seconds)
        self._now = now_provider

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def create(self, user_id: str) -> SessionRecord:
        """Start a new session for a user and return it (token included)."""
        now = self._now()
        session = SessionRecord(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        return await self._storage.save_session(session)

    async def resolve(self, token: Optional[str]) -> Optional[SessionRecord]:
        """
        Look up a live session and extend it.

        Returns:
            The session with its new expiry, or None for a missing or
            unknown token

        Raises:
            SessionExpiredError: The session existed but had expired
                (it is deleted before this is raised)
        """
        if not token:
            return None

        session = await self._storage.get_session(token)
        if session is None:
            return None

        now = self._now()
        if session.is_expired(now):
            await self._storage.delete_session(token)
            raise SessionExpiredError(session.user_id)

        expires_at = now + self._ttl
        await self._storage.touch_session(token, expires_at)
        return session.model_copy(update={"expires_at": expires_at})

    async def revoke(self, token: Optional[str]) -> Optional[SessionRecord]:
        """
        End a session. Unknown tokens are ignored.

        Returns:
            The session that was removed, if there was one
        """
        if not token:
            return None
        session = await self._storage.get_session(token)
        await self._storage.delete_session(token)
        return session

    async def purge_expired(self) -> int:
        return await self._storage.purge_expired_sessions(self._now())
