"""Per-bank access token cache with TTL-based refresh"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from elly_gateway.infrastructure.observability.metrics import token_cache_counter

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[str], Awaitable[Tuple[str, Optional[int]]]]


@dataclass(frozen=True)
class TokenEntry:
    token: str
    expires_at: float  # epoch seconds


class BankTokenCache:
    """
    Shared token cache, one instance per process.

    - Keyed by lower-cased bank code
    - Entries with <= refresh_margin seconds left are refetched
    - Concurrent misses for the same bank share one fetch
    - Fetch errors propagate and nothing is cached
    """

    def __init__(
        self,
        fetcher: TokenFetcher,
        refresh_margin_seconds: int = 60,
        default_ttl_seconds: int = 86_400,
        clock: Callable[[], float] = time.time,
    ):
        self._fetcher = fetcher
        self.refresh_margin_seconds = refresh_margin_seconds
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, TokenEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _fresh(self, key: str) -> Optional[TokenEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        seconds_left = entry.expires_at - self._clock()
        if seconds_left > self.refresh_margin_seconds:
            return entry
        logger.debug("Bank token stale", extra={"bank": key, "ttl_left": seconds_left})
        return None

    async def get_token(self, bank: str) -> str:
        key = bank.lower()

        entry = self._fresh(key)
        if entry is not None:
            token_cache_counter.labels(result="hit").inc()
            return entry.token

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            entry = self._fresh(key)
            if entry is not None:
                token_cache_counter.labels(result="hit").inc()
                return entry.token

            token_cache_counter.labels(result="miss").inc()
            token, ttl = await self._fetcher(key)
            ttl = ttl if ttl is not None else self.default_ttl_seconds
            self._entries[key] = TokenEntry(token=token, expires_at=self._clock() + ttl)
            logger.info("Bank token fetched", extra={"bank": key, "ttl": ttl})
            return token
