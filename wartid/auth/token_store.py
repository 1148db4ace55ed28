"""Pluggable storage for provider tokens retained alongside sessions.

Tokens are keyed by session ID and deleted together with the session.
"""

from __future__ import annotations

import json
import threading
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..types import OAuthTokenSet


if TYPE_CHECKING:
    from redis.asyncio import Redis


class TokenStore(ABC):
    """Abstract base class for OAuth2 token storage.

    All methods are async to support both local and network-backed stores.
    """

    @abstractmethod
    async def save(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> None:
        """Save tokens under the given key.

        Parameters
        ----------
        key : str
            The owning session ID.
        tokens : OAuthTokenSet
            The token set to persist.
        ttl : int, optional
            Seconds to keep the tokens (normally the session lifetime).
        """

    @abstractmethod
    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens for the given key, or None if not found."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete tokens for the given key."""

    @abstractmethod
    async def touch(self, key: str, ttl: int) -> bool:
        """Reset the TTL of existing tokens. Returns False if none are stored."""

    @abstractmethod
    async def replace(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> bool:
        """Overwrite tokens only if some are already stored.

        Returns False, and stores nothing, when the key is absent. Used
        after a refresh so tokens of a session ended meanwhile are not
        brought back.
        """


def _serialize_tokens(tokens: OAuthTokenSet) -> str:
    """Serialize an OAuthTokenSet to JSON."""
    return json.dumps(
        {
            "access_token": tokens.access_token,
            "token_type": tokens.token_type,
            "refresh_token": tokens.refresh_token,
            "expires_in": tokens.expires_in,
            "scope": tokens.scope,
            "raw": tokens.raw,
            "issued_at": tokens.issued_at,
        }
    )


def _deserialize_tokens(data: str) -> OAuthTokenSet:
    """Deserialize an OAuthTokenSet from JSON."""
    obj = json.loads(data)
    return OAuthTokenSet(
        access_token=obj["access_token"],
        token_type=obj.get("token_type", "Bearer"),
        refresh_token=obj.get("refresh_token"),
        expires_in=obj.get("expires_in"),
        scope=obj.get("scope", ""),
        raw=obj.get("raw", {}),
        issued_at=obj.get("issued_at", time.time()),
    )


class MemoryTokenStore(TokenStore):
    """In-memory token store for development and single-process use."""

    def __init__(self) -> None:
        """Initialize the memory token store."""
        self._tokens: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    async def save(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> None:
        """Save tokens in memory."""
        expires_at = time.time() + ttl if ttl else None
        with self._lock:
            self._evict_expired()
            self._tokens[key] = (_serialize_tokens(tokens), expires_at)

    async def touch(self, key: str, ttl: int) -> bool:
        """Reset the TTL of live tokens."""
        with self._lock:
            if not self._is_live(key):
                return False
            data, _ = self._tokens[key]
            self._tokens[key] = (data, time.time() + ttl if ttl else None)
            return True

    async def replace(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> bool:
        """Overwrite live tokens; absent keys stay absent."""
        with self._lock:
            if not self._is_live(key):
                return False
            self._tokens[key] = (_serialize_tokens(tokens), time.time() + ttl if ttl else None)
            return True

    def _is_live(self, key: str) -> bool:
        """Check a key holds unexpired tokens (caller must hold lock)."""
        entry = self._tokens.get(key)
        if entry is None:
            return False
        if entry[1] is not None and entry[1] <= time.time():
            del self._tokens[key]
            return False
        return True

    def _evict_expired(self) -> None:
        """Drop every entry past its TTL (caller must hold lock)."""
        now = time.time()
        expired = [k for k, (_, exp) in self._tokens.items() if exp is not None and exp <= now]
        for k in expired:
            del self._tokens[k]

    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens from memory, dropping them once their TTL has passed."""
        with self._lock:
            entry = self._tokens.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if expires_at is not None and expires_at <= time.time():
                del self._tokens[key]
                return None
            return _deserialize_tokens(data)

    async def delete(self, key: str) -> None:
        """Delete tokens from memory."""
        with self._lock:
            self._tokens.pop(key, None)


class RedisTokenStore(TokenStore):
    """Redis-backed token store for multi-worker deployments.

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
        """Initialize the Redis token store."""
        if redis_client is None:
            try:
                from redis.asyncio import Redis as RedisClient
            except ImportError:
                msg = "Redis backend requires the 'redis' package. Install with: pip install redis"
                raise ImportError(msg) from None
            redis_client = RedisClient.from_url(redis_url, decode_responses=True)
        self._redis: Any = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:oauth:tokens:{key}"

    async def save(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> None:
        """Save tokens to Redis with optional TTL."""
        await self._redis.set(self._key(key), _serialize_tokens(tokens), ex=ttl or None)

    async def touch(self, key: str, ttl: int) -> bool:
        """Reset the key's TTL with EXPIRE, which never creates a key."""
        return bool(await self._redis.expire(self._key(key), ttl))

    async def replace(self, key: str, tokens: OAuthTokenSet, ttl: int | None = None) -> bool:
        """Overwrite tokens with ``SET ... XX``."""
        written = await self._redis.set(
            self._key(key), _serialize_tokens(tokens), ex=ttl or None, xx=True
        )
        return bool(written)

    async def load(self, key: str) -> OAuthTokenSet | None:
        """Load tokens from Redis."""
        data = await self._redis.get(self._key(key))
        if data is None:
            return None
        return _deserialize_tokens(data)

    async def delete(self, key: str) -> None:
        """Delete tokens from Redis."""
        await self._redis.delete(self._key(key))
