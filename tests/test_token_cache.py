"""
Tests for the single-flight carrier token cache.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from parcelhub.core.token_cache import CachedToken, TokenCache


class TestCachedToken:
    """Test freshness window."""

    def test_fresh_outside_margin(self):
        """Token expiring in an hour is fresh with a 5 minute margin."""
        token = CachedToken("abc", datetime.now(timezone.utc) + timedelta(hours=1))
        assert token.is_fresh(300)

    def test_stale_inside_margin(self):
        """Token expiring in 2 minutes is already stale with a 5 minute margin."""
        token = CachedToken("abc", datetime.now(timezone.utc) + timedelta(minutes=2))
        assert not token.is_fresh(300)


class TestTokenCache:
    """Test token fetching, reuse and invalidation."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_fetch_once(self):
        """Many concurrent callers trigger exactly one token exchange."""
        cache = TokenCache(refresh_margin=300)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "token-1", 3600

        tokens = await asyncio.gather(*(cache.get_token("shipentegra", fetcher) for _ in range(20)))

        assert calls == 1
        assert set(tokens) == {"token-1"}

    @pytest.mark.asyncio
    async def test_cached_token_reused(self):
        """Second call is served from cache."""
        cache = TokenCache()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 3600

        assert await cache.get_token("shipentegra", fetcher) == "token-1"
        assert await cache.get_token("shipentegra", fetcher) == "token-1"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_short_lived_token_refetched(self):
        """A token inside the refresh margin is fetched again."""
        cache = TokenCache(refresh_margin=300)
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 60

        await cache.get_token("shipentegra", fetcher)
        assert await cache.get_token("shipentegra", fetcher) == "token-2"

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self):
        """Invalidated tokens are not served."""
        cache = TokenCache()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 3600

        await cache.get_token("shipentegra", fetcher)
        cache.invalidate("shipentegra")

        assert cache.peek("shipentegra") is None
        assert await cache.get_token("shipentegra", fetcher) == "token-2"

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        """Each carrier key has its own token."""
        cache = TokenCache()

        async def fetch_a():
            return "a", 3600

        async def fetch_b():
            return "b", 3600

        assert await cache.get_token("a", fetch_a) == "a"
        assert await cache.get_token("b", fetch_b) == "b"

    @pytest.mark.asyncio
    async def test_fetch_error_propagates_and_nothing_cached(self):
        """A failed exchange leaves the cache empty."""
        cache = TokenCache()

        async def fetcher():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_token("shipentegra", fetcher)
        assert cache.peek("shipentegra") is None
