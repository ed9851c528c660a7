"""Google search via the Serper API."""

import os
from typing import Optional, List

import httpx
from loguru import logger

from services.ownership.models import SearchResult
from services.ownership.retry import RetryPolicy

SERPER_URL = "https://google.serper.dev/search"


class SerperSearch:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        gl: str = "dk",
        hl: str = "da",
    ):
        self.client = client
        self.api_key = api_key or os.getenv("SERPER_API_KEY")
        self.retry = retry or RetryPolicy()
        self.gl = gl
        self.hl = hl

    async def search(self, query: str, num: int = 5) -> List[SearchResult]:
        if not self.api_key:
            logger.debug(f"Search {query!r}: skipped, no SERPER_API_KEY set")
            return []
        try:
            resp = await self.retry.post(
                self.client, SERPER_URL,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json={"q": query, "num": num, "gl": self.gl, "hl": self.hl},
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Search {query!r} failed: {e}")
            return []
        if resp.status_code != 200:
            logger.debug(f"Search {query!r}: Serper returned HTTP {resp.status_code}")
            return []

        try:
            organic = resp.json().get("organic", [])
        except ValueError:
            return []
        results = [
            SearchResult(
                title=item.get("title", ""),
                url=item["link"],
                snippet=item.get("snippet", ""),
            )
            for item in organic
            if isinstance(item, dict) and item.get("link")
        ]
        logger.debug(f"Search {query!r}: {len(results)} organic results")
        return results[:num]
