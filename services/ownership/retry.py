"""Retry policy shared by every external call boundary.

Retries transport errors, timeouts, 429 and 5xx responses with exponential
backoff plus jitter. Anything else (4xx, bad payloads) is returned or raised
on the first attempt.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from services.ownership.config import RetrySettings

T = TypeVar("T")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class RetryableStatus(Exception):
    """Raised internally when a response status should be retried."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + delay * self.jitter * random.random()

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        label: str = "request",
    ) -> T:
        """Await fn() until it succeeds or attempts run out. Re-raises the last error."""
        attempt = 1
        while True:
            try:
                return await fn()
            except (httpx.TransportError, RetryableStatus) as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    f"{label}: attempt {attempt}/{self.max_attempts} failed ({e!r}), "
                    f"retrying in {delay:.2f}s"
                )
                await self.sleep(delay)
                attempt += 1

    async def get(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        """GET with retries. Returns the final response, retryable or not."""
        return await self.request(client, "GET", url, **kwargs)

    async def post(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        return await self.request(client, "POST", url, **kwargs)

    async def request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs
    ) -> httpx.Response:
        async def attempt() -> httpx.Response:
            resp = await client.request(method, url, **kwargs)
            if resp.status_code in RETRYABLE_STATUS:
                raise RetryableStatus(resp)
            return resp

        try:
            return await self.run(attempt, label=f"{method} {url}")
        except RetryableStatus as e:
            return e.response


NO_RETRY = RetryPolicy(max_attempts=1)
