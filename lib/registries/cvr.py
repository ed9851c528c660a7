"""CVR business registry lookups.

Primary: cvrapi.dk (JSON, one best hit per query).
Fallback: proff.dk company directory, scraped for an 8-digit CVR number that
is then looked up in the primary registry.

Results are unscored RegistryCandidates. Scoring happens in
services.ownership.matcher.

Rate limit: cvrapi.dk throttles aggressively, keep >= 0.3s between requests.
"""

import asyncio
import os
import re
import time
from typing import Optional, Dict, Any

import httpx
from loguru import logger

from services.ownership.models import RegistryCandidate
from services.ownership.retry import RetryPolicy

CVR_API_URL = os.getenv("CVR_API_URL", "https://cvrapi.dk/api")
CVR_USER_AGENT = os.getenv("CVR_USER_AGENT", "EjendomOwnership/1.0")
PROFF_SEARCH_URL = "https://www.proff.dk/bransjes%C3%B8k"
PROFF_BASE_URL = "https://www.proff.dk"

_BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "da-DK,da;q=0.9",
}

CVR_IN_TEXT = re.compile(r"CVR[:\s-]*(?:nr\.?[:\s]*)?(\d{8})", re.I)


def candidate_from_payload(data: Dict[str, Any]) -> Optional[RegistryCandidate]:
    """Map a cvrapi.dk payload onto a RegistryCandidate."""
    if not data or data.get("error") or not data.get("vat") or not data.get("name"):
        return None
    status = data.get("status")
    if not status:
        status = "ceased" if data.get("enddate") else "active"
    owners = [o.get("name") for o in (data.get("owners") or []) if isinstance(o, dict) and o.get("name")]
    phone = data.get("phone")
    return RegistryCandidate(
        cvr=str(data["vat"]),
        name=str(data["name"]).strip(),
        address=data.get("address"),
        postal_code=str(data["zipcode"]) if data.get("zipcode") else None,
        city=data.get("city"),
        status=status,
        owners=owners,
        email=data.get("email") or None,
        phone=str(phone) if phone else None,
        industry=data.get("industrydesc"),
        source="cvrapi",
        raw=data,
    )


class CvrApiClient:
    """Implements IBusinessRegistry against cvrapi.dk."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str = CVR_API_URL,
        user_agent: str = CVR_USER_AGENT,
        retry: Optional[RetryPolicy] = None,
        min_interval: float = 0.3,
    ):
        self.client = client
        self.api_url = api_url
        self.user_agent = user_agent
        self.retry = retry or RetryPolicy()
        self.min_interval = min_interval
        self._last_request = 0.0

    async def _throttle(self) -> None:
        wait = self.min_interval - (time.monotonic() - self._last_request)
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_request = time.monotonic()

    async def _query(self, params: Dict[str, str]) -> Optional[RegistryCandidate]:
        await self._throttle()
        try:
            resp = await self.retry.get(
                self.client, self.api_url,
                params={"country": "dk", **params},
                headers={"User-Agent": self.user_agent},
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            logger.warning(f"CVR lookup failed for {params}: {e}")
            return None
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            logger.warning(f"CVR API returned HTTP {resp.status_code} for {params}")
            return None
        try:
            return candidate_from_payload(resp.json())
        except ValueError:
            logger.warning(f"CVR API returned invalid JSON for {params}")
            return None

    async def lookup_by_name(self, name: str) -> Optional[RegistryCandidate]:
        name = (name or "").strip()
        if not name:
            return None
        return await self._query({"name": name})

    async def lookup_by_number(self, cvr: str) -> Optional[RegistryCandidate]:
        cvr = (cvr or "").strip()
        if not re.fullmatch(r"\d{8}", cvr):
            return None
        return await self._query({"vat": cvr})


class ProffDirectory:
    """Implements IDirectoryFallback by scraping proff.dk search results."""

    def __init__(self, client: httpx.AsyncClient, retry: Optional[RetryPolicy] = None):
        self.client = client
        self.retry = retry or RetryPolicy()

    async def _fetch(self, url: str, params: Optional[Dict[str, str]] = None) -> Optional[str]:
        try:
            resp = await self.retry.get(
                self.client, url, params=params, headers=_BROWSER_HEADERS,
                timeout=15.0, follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.warning(f"proff.dk fetch failed ({url}): {e}")
            return None
        if resp.status_code != 200:
            return None
        return resp.text

    async def find_registry_number(self, name: str) -> Optional[str]:
        name = (name or "").strip()
        if not name:
            return None
        html = await self._fetch(PROFF_SEARCH_URL, {"q": name})
        if not html:
            return None

        escaped = re.escape(name)
        if re.search(escaped, html, re.I):
            m = CVR_IN_TEXT.search(html)
            if m:
                logger.debug(f"proff.dk: CVR {m.group(1)} for {name!r}")
                return m.group(1)

        link = re.search(rf'href="(/roller/[^"]*?)"[^>]*>[^<]*{escaped}', html, re.I)
        if not link:
            return None
        detail = await self._fetch(f"{PROFF_BASE_URL}{link.group(1)}")
        if not detail:
            return None
        m = CVR_IN_TEXT.search(detail)
        if m:
            logger.debug(f"proff.dk detail: CVR {m.group(1)} for {name!r}")
            return m.group(1)
        return None
