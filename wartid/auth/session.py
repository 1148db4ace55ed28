"""Session storage, resolution and CSRF-protected logout.

Sessions are created by the callback handler and looked up on every
request through the opaque session credential carried by the browser.
Provider tokens retained for a session live in a TokenStore under the
same ID and are destroyed together with it.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import hmac
import json
import logging
import secrets
import threading
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..exceptions import InvalidCsrfError, SessionExpiredError, TokenRefreshError
from ..types import LoginRedirect, Session
from .state import RedisClient, _check_redis


if TYPE_CHECKING:
    from collections.abc import Iterable

    from redis.asyncio import Redis

    from ..types import Identity, OAuthTokenSet, SessionOrRedirect
    from .provider import WartIDProvider
    from .token_store import TokenStore


logger = logging.getLogger("wartid.auth")
security_logger = logging.getLogger("wartid.security")

SESSION_ID_BYTES = 32


class SessionStore(ABC):
    """Abstract session storage interface."""

    @abstractmethod
    async def create(self, session: Session) -> None:
        """Store a new session.

        Parameters
        ----------
        session : Session
            The session to store; its ``expires_at`` bounds its lifetime.
        """

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Get a session by ID.

        Returns
        -------
        Session or None
            The session if found and not expired. Expired sessions are
            removed on access.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""

    @abstractmethod
    async def touch(self, session_id: str, expires_at: float) -> bool:
        """Move a session's expiry. Returns False if the session is gone."""

    async def cleanup(self) -> int:
        """Remove expired sessions. Returns the number removed."""
        return 0


class MemorySessionStore(SessionStore):
    """In-memory session store for single-process deployments."""

    def __init__(self) -> None:
        """Initialize the memory session store."""
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    async def create(self, session: Session) -> None:
        """Store a new session, reaping expired ones first."""
        with self._lock:
            self._evict_expired()
            self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> Session | None:
        """Get a session by ID, reaping it if expired."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired:
                del self._sessions[session_id]
                return None
            return session

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def touch(self, session_id: str, expires_at: float) -> bool:
        """Move a live session's expiry."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_expired:
                return False
            session.expires_at = expires_at
            return True

    async def cleanup(self) -> int:
        """Remove all expired sessions."""
        with self._lock:
            return self._evict_expired()

    def _evict_expired(self) -> int:
        """Remove expired sessions (caller must hold lock)."""
        expired = [sid for sid, s in self._sessions.items() if s.is_expired]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)


class RedisSessionStore(SessionStore):
    """Redis-backed session store with automatic TTL expiry.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for Redis keys.
    redis_client : Redis, optional
        Pre-configured Redis client (for testing with fakeredis).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "wartid",
        *,
        redis_client: Redis | None = None,
    ) -> None:
        """Initialize the Redis session store."""
        if redis_client is None:
            _check_redis()
            redis_client = RedisClient.from_url(redis_url, decode_responses=True)
        self._redis: Any = redis_client
        self._prefix = prefix

    def _key(self, session_id: str) -> str:
        """Get Redis key for a session."""
        return f"{self._prefix}:session:{session_id}"

    @staticmethod
    def _ttl(expires_at: float) -> int:
        return max(1, int(expires_at - time.time()))

    async def create(self, session: Session) -> None:
        """Store a session as JSON with a TTL matching its expiry."""
        await self._redis.set(
            self._key(session.session_id),
            json.dumps(session.to_dict()),
            ex=self._ttl(session.expires_at),
        )

    async def get(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        data = await self._redis.get(self._key(session_id))
        if data is None:
            return None
        session = Session.from_dict(json.loads(data))
        if session.is_expired:
            await self._redis.delete(self._key(session_id))
            return None
        return session

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        return bool(await self._redis.delete(self._key(session_id)))

    async def touch(self, session_id: str, expires_at: float) -> bool:
        """Rewrite the session with a new expiry and TTL.

        The write uses ``SET ... XX`` so a session deleted between the
        read and the write stays deleted.
        """
        session = await self.get(session_id)
        if session is None:
            return False
        session.expires_at = expires_at
        written = await self._redis.set(
            self._key(session_id),
            json.dumps(session.to_dict()),
            ex=self._ttl(expires_at),
            xx=True,
        )
        return bool(written)


class SessionManager:
    """Creates, resolves and destroys authenticated sessions.

    Parameters
    ----------
    store : SessionStore
        Where sessions live.
    token_store : TokenStore
        Where provider tokens for each session live.
    provider : WartIDProvider
        Used to refresh expired access tokens.
    login_url : str
        The login route, used to build redirect instructions.
    ttl : int
        Session lifetime in seconds (default 24 hours).
    sliding_expiration : bool
        Extend the session on every successful resolve.
    """

    def __init__(
        self,
        store: SessionStore,
        token_store: TokenStore,
        provider: WartIDProvider,
        login_url: str,
        ttl: int = 86400,
        sliding_expiration: bool = False,
    ) -> None:
        """Initialize the session manager."""
        self.store = store
        self.token_store = token_store
        self.provider = provider
        self.login_url = login_url
        self.ttl = ttl
        self.sliding_expiration = sliding_expiration

    async def create(
        self,
        identity: Identity,
        scopes: Iterable[str],
        tokens: OAuthTokenSet,
    ) -> Session:
        """Create a session for an authenticated identity.

        The session and its tokens are stored together; if storing the
        tokens fails the session is removed again before re-raising.

        Parameters
        ----------
        identity : Identity
            The user returned by the userinfo endpoint.
        scopes : iterable of str
            The scopes granted for this session.
        tokens : OAuthTokenSet
            Provider tokens retained for refresh.

        Returns
        -------
        Session
            The newly stored session.
        """
        now = time.time()
        session = Session(
            session_id=secrets.token_urlsafe(SESSION_ID_BYTES),
            user_id=identity.user_id,
            display_name=identity.display_name,
            email=identity.email,
            granted_scopes=frozenset(scopes),
            issued_at=now,
            expires_at=now + self.ttl,
            csrf_token=secrets.token_urlsafe(SESSION_ID_BYTES),
        )
        await self.store.create(session)
        try:
            await self.token_store.save(session.session_id, tokens, ttl=self.ttl)
        except BaseException:
            await self.store.delete(session.session_id)
            raise
        logger.info("Session created for user %s", session.user_id)
        return session

    async def resolve(self, credential: str | None) -> Session | None:
        """Map a session credential to its live session.

        Unknown, expired and empty credentials resolve to None. Retained
        tokens of a session found missing are dropped as well.
        """
        if not credential:
            return None

        session = await self.store.get(credential)
        if session is None:
            await self.token_store.delete(credential)
            return None

        if self.sliding_expiration:
            expires_at = time.time() + self.ttl
            if await self.store.touch(session.session_id, expires_at):
                session.expires_at = expires_at
                await self.token_store.touch(session.session_id, self.ttl)

        return session

    async def require(self, credential: str | None) -> Session:
        """Resolve a credential or fail.

        Raises
        ------
        SessionExpiredError
            If no live session matches the credential.
        """
        session = await self.resolve(credential)
        if session is None:
            msg = "No active session"
            raise SessionExpiredError(msg)
        return session

    async def resolve_or_redirect(
        self,
        credential: str | None,
        redirect_to: str | None = None,
    ) -> SessionOrRedirect:
        """Resolve a credential, or return an instruction to log in.

        Parameters
        ----------
        credential : str or None
            The session credential.
        redirect_to : str, optional
            Path to return to after logging in.
        """
        session = await self.resolve(credential)
        if session is None:
            return LoginRedirect(login_url=self.login_url, redirect_to=redirect_to)
        return session

    async def destroy(self, session_id: str) -> bool:
        """Delete a session and its retained tokens."""
        await self.token_store.delete(session_id)
        return await self.store.delete(session_id)

    async def logout(self, credential: str | None, csrf_token: str | None) -> bool:
        """Destroy the session behind ``credential`` after checking CSRF.

        Parameters
        ----------
        credential : str or None
            The session credential.
        csrf_token : str or None
            The CSRF token submitted with the logout request.

        Returns
        -------
        bool
            True if a session was destroyed, False if none was active.

        Raises
        ------
        InvalidCsrfError
            If the token does not match the session's; nothing changes.
        """
        session = await self.resolve(credential)
        if session is None:
            return False

        if not csrf_token or not hmac.compare_digest(csrf_token, session.csrf_token):
            security_logger.warning("Logout with invalid CSRF token for user %s", session.user_id)
            msg = "Invalid CSRF token"
            raise InvalidCsrfError(msg)

        await self.destroy(session.session_id)
        logger.info("Session for user %s logged out", session.user_id)
        return True

    async def get_access_token(self, session_id: str) -> str:
        """Get a valid access token for a session, refreshing if expired.

        Raises
        ------
        SessionExpiredError
            If the session has no retained tokens, or was ended while
            the refresh was in flight.
        TokenRefreshError
            If the token expired and refresh failed; the session is
            destroyed in that case.
        """
        tokens = await self.token_store.load(session_id)
        if tokens is None:
            msg = "No tokens retained for this session"
            raise SessionExpiredError(msg)

        if not tokens.is_expired:
            return tokens.access_token

        if not tokens.refresh_token:
            await self.destroy(session_id)
            msg = "Access token expired and no refresh token available"
            raise TokenRefreshError(msg)

        try:
            tokens = await self.provider.refresh_tokens(tokens.refresh_token)
        except TokenRefreshError:
            logger.exception("Token refresh failed, ending session")
            await self.destroy(session_id)
            raise

        if not await self.token_store.replace(session_id, tokens, ttl=self.ttl):
            msg = "Session ended during token refresh"
            raise SessionExpiredError(msg)
        logger.debug("Access token refreshed")
        return tokens.access_token

    async def cleanup(self) -> int:
        """Reap expired sessions from the store.

        Returns
        -------
        int
            The number of sessions removed.
        """
        return await self.store.cleanup()
