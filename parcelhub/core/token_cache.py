"""
Carrier OAuth Token Cache

Single-flight token refresh per carrier:
- One asyncio.Lock per carrier key
- Concurrent callers needing a refresh wait on the same lock and reuse the
  token fetched by whichever caller got there first
- Tokens are treated as expired `refresh_margin` seconds before real expiry

Owned by the CarrierRegistry and injected into adapters; there is no
module-level instance.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# fetcher returns (access_token, expires_in_seconds)
TokenFetcher = Callable[[], Awaitable[Tuple[str, int]]]


@dataclass
class CachedToken:
    access_token: str
    expires_at: datetime

    def is_fresh(self, margin_seconds: int) -> bool:
        return datetime.now(timezone.utc) < self.expires_at - timedelta(seconds=margin_seconds)


class TokenCache:
    """Per-carrier token storage with single-flight refresh."""

    def __init__(self, refresh_margin: int = 300):
        self.refresh_margin = refresh_margin
        self._tokens: Dict[str, CachedToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        # No await between check and insert, so this is race-free on one loop
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def peek(self, key: str) -> Optional[str]:
        """Return a cached token if still fresh, else None."""
        cached = self._tokens.get(key)
        if cached and cached.is_fresh(self.refresh_margin):
            return cached.access_token
        return None

    async def get_token(self, key: str, fetcher: TokenFetcher) -> str:
        """
        Get a valid token for `key`, calling `fetcher` at most once per expiry.

        Args:
            key: Carrier identifier
            fetcher: Coroutine factory performing the actual token exchange

        Returns:
            Access token string
        """
        token = self.peek(key)
        if token:
            return token

        async with self._get_lock(key):
            # Another caller may have refreshed while we waited
            token = self.peek(key)
            if token:
                return token

            access_token, expires_in = await fetcher()
            self._tokens[key] = CachedToken(
                access_token=access_token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)),
            )
            logger.info(f"{key} OAuth token obtained, expires in {expires_in}s")
            return access_token

    def invalidate(self, key: str) -> None:
        """Drop a token the carrier rejected."""
        self._tokens.pop(key, None)
