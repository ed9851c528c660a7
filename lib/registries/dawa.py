"""DAWA address register client.

Every query is tried against the primary host first and the mirror second.
HTTP failures and empty payloads surface as None.
"""

import os
from urllib.parse import quote
from typing import Optional, Any, Dict, List

import httpx
from loguru import logger

from services.ownership.models import AccessAddress
from services.ownership.retry import RetryPolicy

DAWA_URLS = [
    os.getenv("DAWA_API_URL", "https://dawa.aws.dk").rstrip("/"),
    "https://api.dataforsyningen.dk",
]

_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "Mozilla/5.0 (compatible; EjendomOwnership/1.0)",
}


class DawaClient:
    """Implements IAddressLookup against dawa.aws.dk and its mirror."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_urls: Optional[List[str]] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 15.0,
    ):
        self.client = client
        self.base_urls = base_urls or DAWA_URLS
        self.retry = retry or RetryPolicy()
        self.timeout = timeout

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """First non-empty JSON payload across hosts, else None."""
        for base_url in self.base_urls:
            url = f"{base_url}{path}"
            try:
                resp = await self.retry.get(
                    self.client, url, params=params, headers=_HEADERS, timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                logger.warning(f"DAWA {url} failed: {e}")
                continue
            if resp.status_code != 200:
                logger.debug(f"DAWA {url} returned HTTP {resp.status_code}")
                continue
            try:
                data = resp.json()
            except ValueError:
                logger.warning(f"DAWA {url} returned invalid JSON")
                continue
            if data:
                return data
        return None

    async def structured_search(
        self, street: str, house_number: str, postal_code: Optional[str],
    ) -> Optional[str]:
        params = {"vejnavn": street, "husnr": house_number, "struktur": "mini", "per_side": "1"}
        # An empty postnr makes DAWA return nothing
        if postal_code:
            params["postnr"] = postal_code
        data = await self._get_json("/adresser", params)
        if isinstance(data, list) and data:
            return data[0].get("adgangsadresseid") or data[0].get("id")
        return None

    async def fuzzy_search(self, query: str) -> Optional[str]:
        params = {"q": query, "struktur": "mini", "per_side": "1"}
        data = await self._get_json("/adgangsadresser", params)
        if isinstance(data, list) and data:
            return data[0].get("id")
        return None

    async def access_address(self, access_address_id: str) -> Optional[AccessAddress]:
        data = await self._get_json(f"/adgangsadresser/{access_address_id}")
        if not isinstance(data, dict):
            return None
        ejerlav = data.get("ejerlav") or {}
        kommune = data.get("kommune") or {}
        return AccessAddress(
            access_address_id=access_address_id,
            ejerlav_code=str(ejerlav["kode"]) if ejerlav.get("kode") is not None else None,
            matrikel_number=data.get("matrikelnr"),
            municipality_name=kommune.get("navn"),
            municipality_code=kommune.get("kode"),
        )

    async def parcel_bfe(self, ejerlav_code: str, matrikel_number: str) -> Optional[str]:
        path = f"/jordstykker/{ejerlav_code}/{quote(matrikel_number, safe='')}"
        data = await self._get_json(path)
        if not isinstance(data, dict):
            return None
        bfe = data.get("bfenummer") or data.get("sfeejendomsnr")
        if bfe is None:
            return None
        try:
            return str(int(bfe)) if int(bfe) > 0 else None
        except (TypeError, ValueError):
            return None
