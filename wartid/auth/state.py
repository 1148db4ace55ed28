"""Login state nonces: issuance, storage and single-use validation.

Every login redirect records a PendingLogin keyed by a fresh random
nonce. The provider echoes the nonce back as ``state`` and the callback
consumes it exactly once; validate-and-remove is a single atomic step in
every backend.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import threading
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..exceptions import InvalidStateError
from ..types import PendingLogin


if TYPE_CHECKING:
    from collections.abc import Iterable

    from redis.asyncio import Redis


try:
    from redis.asyncio import Redis as RedisClient

    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False
    RedisClient = None  # type: ignore[assignment,misc]


logger = logging.getLogger("wartid.auth")
security_logger = logging.getLogger("wartid.security")

# 32 bytes -> 256 bits of entropy, well above the 128-bit floor.
NONCE_BYTES = 32


def flow_id(nonce: str) -> str:
    """Derive a log-safe identifier for a login attempt from its nonce."""
    return hashlib.sha256(nonce.encode()).hexdigest()[:12]


def _check_redis() -> None:
    """Check if redis package is available."""
    if not HAS_REDIS:
        msg = "Redis backend requires the 'redis' package. Install with: pip install wartid-client[redis]"
        raise ImportError(msg)


class PendingLoginStore(ABC):
    """Abstract storage for pending login attempts."""

    @abstractmethod
    async def put(self, pending: PendingLogin) -> None:
        """Store a pending login under its nonce.

        Parameters
        ----------
        pending : PendingLogin
            The pending login to record.
        """

    @abstractmethod
    async def pop(self, nonce: str) -> PendingLogin | None:
        """Atomically retrieve and remove a pending login.

        Parameters
        ----------
        nonce : str
            The state nonce.

        Returns
        -------
        PendingLogin or None
            The pending login if it existed and had not expired.
        """

    @abstractmethod
    async def size(self) -> int:
        """Return the current number of pending logins."""

    async def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        return 0


class MemoryPendingLoginStore(PendingLoginStore):
    """Bounded, TTL-enforced in-process store for pending logins.

    Guarded by a ``threading.Lock`` so pop-and-check stays atomic no
    matter which thread or event loop serves the callback. Expired entries
    are evicted on every access and a hard capacity limit bounds memory
    use from abandoned logins.

    Parameters
    ----------
    max_pending : int
        Maximum number of concurrent pending logins.
    """

    def __init__(self, max_pending: int = 1000) -> None:
        self._store: dict[str, PendingLogin] = {}
        self._lock = threading.Lock()
        self._max_pending = max_pending

    async def put(self, pending: PendingLogin) -> None:
        """Store a pending login, evicting the oldest one at capacity."""
        with self._lock:
            self._evict_expired()
            if len(self._store) >= self._max_pending:
                oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
                del self._store[oldest_key]
                logger.warning("Pending login capacity reached, evicted oldest attempt")
            self._store[pending.state_nonce] = pending

    async def pop(self, nonce: str) -> PendingLogin | None:
        """Retrieve and remove a pending login (single-use)."""
        with self._lock:
            self._evict_expired()
            return self._store.pop(nonce, None)

    async def size(self) -> int:
        """Return current number of pending logins."""
        with self._lock:
            return len(self._store)

    async def cleanup(self) -> int:
        """Explicitly clean up expired entries. Returns count removed."""
        with self._lock:
            before = len(self._store)
            self._evict_expired()
            return before - len(self._store)

    def _evict_expired(self) -> None:
        """Remove all expired entries (caller must hold lock)."""
        now = time.time()
        expired = [k for k, v in self._store.items() if v.expires_at <= now]
        for k in expired:
            del self._store[k]


class RedisPendingLoginStore(PendingLoginStore):
    """Redis-backed pending login store for multi-worker deployments.

    Entries are written with ``SET ... EX`` so Redis reclaims abandoned
    logins, and consumed with ``GETDEL`` so two workers can never both
    validate the same nonce.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "wartid").
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
        """Initialize the Redis pending login store."""
        if redis_client is None:
            _check_redis()
            redis_client = RedisClient.from_url(redis_url, decode_responses=True)
        self._redis: Any = redis_client
        self._prefix = prefix

    def _key(self, nonce: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:pending_login:{nonce}"

    async def put(self, pending: PendingLogin) -> None:
        """Store a pending login with a TTL matching its expiry."""
        ttl = max(1, int(pending.expires_at - time.time()))
        await self._redis.set(self._key(pending.state_nonce), json.dumps(pending.to_dict()), ex=ttl)

    async def pop(self, nonce: str) -> PendingLogin | None:
        """Atomically retrieve and delete a pending login."""
        data = await self._redis.getdel(self._key(nonce))
        if data is None:
            return None
        pending = PendingLogin.from_dict(json.loads(data))
        if pending.is_expired:
            return None
        return pending

    async def size(self) -> int:
        """Count pending logins in Redis."""
        return len([key async for key in self._redis.scan_iter(match=self._key("*"))])


class StateManager:
    """Issues and validates login state nonces.

    Parameters
    ----------
    store : PendingLoginStore
        Where pending logins are kept between redirect and callback.
    ttl : float
        Seconds a pending login stays valid (default 600).
    """

    def __init__(self, store: PendingLoginStore, ttl: float = 600.0) -> None:
        self.store = store
        self.ttl = ttl

    async def issue(
        self,
        scopes: Iterable[str],
        redirect_to: str | None = None,
    ) -> str:
        """Record a new pending login and return its nonce.

        Parameters
        ----------
        scopes : iterable of str
            Scopes requested by this login attempt.
        redirect_to : str, optional
            Local path to land on once logged in.

        Returns
        -------
        str
            A fresh URL-safe nonce with 256 bits of entropy.
        """
        nonce = secrets.token_urlsafe(NONCE_BYTES)
        now = time.time()
        await self.store.put(
            PendingLogin(
                state_nonce=nonce,
                requested_scopes=frozenset(scopes),
                created_at=now,
                expires_at=now + self.ttl,
                redirect_to=redirect_to,
            )
        )
        logger.debug("Issued login state %s", flow_id(nonce))
        return nonce

    async def validate(self, nonce: str | None) -> PendingLogin:
        """Consume a nonce and return its pending login.

        Parameters
        ----------
        nonce : str or None
            The ``state`` parameter of the callback.

        Returns
        -------
        PendingLogin
            The consumed pending login; ``requested_scopes`` holds the
            scopes of the original request.

        Raises
        ------
        InvalidStateError
            If the nonce is missing, unknown, expired or already consumed.
        """
        if not nonce:
            security_logger.warning("Callback without state parameter rejected")
            msg = "Missing state parameter"
            raise InvalidStateError(msg)

        pending = await self.store.pop(nonce)
        if pending is None:
            fid = flow_id(nonce)
            security_logger.warning("Unknown, expired or replayed login state %s rejected", fid)
            msg = "Invalid or expired state parameter"
            raise InvalidStateError(msg, flow_id=fid)

        return pending
