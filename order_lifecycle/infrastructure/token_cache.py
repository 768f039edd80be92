import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TokenCache:
    """Caches a provider auth token until its TTL runs out.

    Concurrent callers that find the token expired wait on one lock, so a
    single login refreshes it for all of them.
    """

    def __init__(
        self,
        fetch_token: Callable[[], Awaitable[str]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_token = fetch_token
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        if self._valid():
            return self._token

        async with self._lock:
            if self._valid():
                return self._token
            token = await self._fetch_token()
            self._token = token
            self._expires_at = self._clock() + self._ttl
            logger.info("Provider token refreshed")
            return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0
