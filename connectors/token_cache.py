"""
Process-wide cache for the service-mode (client-credentials) bearer token.

The cache is an explicit object owned by the composition root rather than
module state, so tests and the app each get their own.  A token is usable
only while ``now < expires_at - safety_margin``.  Refresh is guarded by an
``asyncio.Lock`` so concurrent callers share one in-flight token request;
pass ``single_flight=False`` to get the unguarded last-writer-wins
behaviour.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN_SECONDS = 300

# Returns (access_token, expires_in_seconds)
TokenFetcher = Callable[[], Awaitable[Tuple[str, int]]]


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: float  # absolute, seconds since epoch

    def is_usable(self, now: float, safety_margin: float) -> bool:
        return now < self.expires_at - safety_margin


class TokenCache:
    """Holds at most one ``CachedToken``; replaced wholesale on refresh."""

    def __init__(
        self,
        *,
        safety_margin: float = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
        single_flight: bool = True,
    ):
        self._token: Optional[CachedToken] = None
        self._safety_margin = safety_margin
        self._clock = clock
        self._lock: Optional[asyncio.Lock] = asyncio.Lock() if single_flight else None

    @property
    def current(self) -> Optional[CachedToken]:
        return self._token

    def peek(self) -> Optional[str]:
        """Return the cached value if still usable, without refreshing."""
        token = self._token
        if token and token.is_usable(self._clock(), self._safety_margin):
            return token.value
        return None

    def invalidate(self) -> None:
        self._token = None

    async def get(self, fetch: TokenFetcher) -> str:
        cached = self.peek()
        if cached is not None:
            logger.debug("Using cached service token")
            return cached

        if self._lock is None:
            return await self._refresh(fetch)

        async with self._lock:
            # Another task may have refreshed while we waited.
            cached = self.peek()
            if cached is not None:
                return cached
            return await self._refresh(fetch)

    async def _refresh(self, fetch: TokenFetcher) -> str:
        issued_at = self._clock()
        value, expires_in = await fetch()
        self._token = CachedToken(value=value, expires_at=issued_at + float(expires_in))
        logger.info("Acquired new service token (expires in %ss)", expires_in)
        return value
