"""Unit tests for token storage backends."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json
import time

import pytest

from wartid.auth.token_store import MemoryTokenStore, _deserialize_tokens, _serialize_tokens
from wartid.types import OAuthTokenSet


@pytest.fixture()
def sample_tokens() -> OAuthTokenSet:
    """Create sample tokens for testing."""
    return OAuthTokenSet(
        access_token="at_test_123",
        refresh_token="rt_test_456",
        expires_in=3600,
        scope="basic email",
        issued_at=time.time(),
    )


class TestSerialization:
    """Tests for token serialization helpers."""

    def test_serialize_is_json(self, sample_tokens: OAuthTokenSet) -> None:
        """Serialized output is valid JSON."""
        parsed = json.loads(_serialize_tokens(sample_tokens))
        assert parsed["access_token"] == "at_test_123"
        assert parsed["scope"] == "basic email"

    def test_deserialize_missing_fields(self) -> None:
        """Deserialize fills in defaults for optional fields."""
        tokens = _deserialize_tokens(json.dumps({"access_token": "at_minimal"}))
        assert tokens.access_token == "at_minimal"
        assert tokens.token_type == "Bearer"
        assert tokens.refresh_token is None


class TestMemoryTokenStore:
    """Tests for MemoryTokenStore."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, sample_tokens: OAuthTokenSet) -> None:
        """Saved tokens can be loaded back."""
        store = MemoryTokenStore()
        await store.save("s1", sample_tokens)

        loaded = await store.load("s1")
        assert loaded is not None
        assert loaded.refresh_token == "rt_test_456"
        assert loaded.expires_in == 3600

    @pytest.mark.asyncio
    async def test_load_missing(self) -> None:
        """Loading an unknown key returns None."""
        assert (await MemoryTokenStore().load("nope")) is None

    @pytest.mark.asyncio
    async def test_ttl_elapsed(self, sample_tokens: OAuthTokenSet) -> None:
        """Tokens are dropped once their TTL has passed."""
        store = MemoryTokenStore()
        await store.save("s1", sample_tokens, ttl=60)
        data, _ = store._tokens["s1"]
        store._tokens["s1"] = (data, time.time() - 1)

        assert (await store.load("s1")) is None
        assert "s1" not in store._tokens

    @pytest.mark.asyncio
    async def test_delete(self, sample_tokens: OAuthTokenSet) -> None:
        """Deleted tokens are gone; deleting twice is harmless."""
        store = MemoryTokenStore()
        await store.save("s1", sample_tokens)
        await store.delete("s1")
        await store.delete("s1")
        assert (await store.load("s1")) is None

    @pytest.mark.asyncio
    async def test_save_evicts_expired(self, sample_tokens: OAuthTokenSet) -> None:
        """Saving drops entries whose TTL has passed."""
        store = MemoryTokenStore()
        data = _serialize_tokens(sample_tokens)
        for i in range(20):
            store._tokens[f"old{i}"] = (data, time.time() - 1)
        store._tokens["forever"] = (data, None)

        await store.save("s1", sample_tokens, ttl=60)

        assert set(store._tokens) == {"forever", "s1"}

    @pytest.mark.asyncio
    async def test_touch_and_replace_need_existing(self, sample_tokens: OAuthTokenSet) -> None:
        """touch() and replace() leave absent or expired keys absent."""
        store = MemoryTokenStore()
        assert not await store.touch("gone", 60)
        assert not await store.replace("gone", sample_tokens, ttl=60)
        assert store._tokens == {}

        await store.save("s1", sample_tokens, ttl=60)
        data, _ = store._tokens["s1"]
        store._tokens["s1"] = (data, time.time() - 1)
        assert not await store.touch("s1", 60)
        assert "s1" not in store._tokens

    @pytest.mark.asyncio
    async def test_touch_and_replace_existing(self, sample_tokens: OAuthTokenSet) -> None:
        """touch() extends the TTL; replace() swaps the stored tokens."""
        store = MemoryTokenStore()
        await store.save("s1", sample_tokens, ttl=10)

        assert await store.touch("s1", 600)
        assert store._tokens["s1"][1] > time.time() + 500

        refreshed = OAuthTokenSet(access_token="at_new", refresh_token="rt_test_456")
        assert await store.replace("s1", refreshed, ttl=600)
        loaded = await store.load("s1")
        assert loaded is not None
        assert loaded.access_token == "at_new"
