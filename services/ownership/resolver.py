"""Address → cadastral property identifier (BFE) resolution.

Fallback chain, first hit wins:
  1. Structured query: street + house number [+ postal code]
  2. Fuzzy full string: address + postal code + city
  3. Address only (tolerates a mislabeled city/municipality)
  4. Access address → cadastral parcel (ejerlav + matrikel) → BFE
  5. Web search for a BFE embedded in registry URLs or stated in snippets

Exhaustion returns None. "No identifier" is a normal outcome downstream.
"""

import re
import time
from typing import Optional, Tuple, List

from loguru import logger

from services.ownership.interfaces import IAddressLookup, IWebEvidence
from services.ownership.models import ResolvedIdentifier, SearchResult

ADDRESS_RE = re.compile(r"^(.+?)\s+(\d+\w?)$")
OIS_URL_RE = re.compile(r"ois\.dk/search/(\d+)")
BFE_TEXT_RE = re.compile(r"BFE[:\s]*(\d{5,8})", re.I)

# The address register is strict about spelling: "Kobenhavn" finds nothing
CITY_SPELLING = {
    "kobenhavn": "København",
    "københavn": "København",
    "copenhagen": "København",
    "kbh": "København",
    "aarhus": "Aarhus",
    "arhus": "Aarhus",
    "århus": "Aarhus",
    "odense": "Odense",
    "aalborg": "Aalborg",
    "alborg": "Aalborg",
    "ålborg": "Aalborg",
    "esbjerg": "Esbjerg",
}


def parse_street_address(address: str) -> Tuple[Optional[str], Optional[str]]:
    """'Vesterbrogade 12B, 2. tv' → ('Vesterbrogade', '12B')."""
    clean = (address or "").split(",")[0].strip()
    m = ADDRESS_RE.match(clean)
    if not m:
        return None, None
    return m.group(1).strip(), m.group(2).strip()


def normalize_city(city: Optional[str]) -> str:
    if not city:
        return ""
    lowered = city.strip().lower()
    if lowered in CITY_SPELLING:
        return CITY_SPELLING[lowered]
    # "København K", "Aarhus C" → district suffix dropped
    head = lowered.split()[0] if lowered.split() else lowered
    return CITY_SPELLING.get(head, city.strip())


def extract_bfe(results: List[SearchResult]) -> Optional[str]:
    """First BFE found in result URLs, then in titles/snippets."""
    for result in results:
        m = OIS_URL_RE.search(result.url or "")
        if m and int(m.group(1)) > 0:
            return m.group(1)
        m = BFE_TEXT_RE.search(f"{result.title} {result.snippet}")
        if m and int(m.group(1)) > 0:
            return m.group(1)
    return None


class AddressResolver:
    """Resolves free-text addresses to a BFE number."""

    def __init__(self, lookup: IAddressLookup, web: Optional[IWebEvidence] = None):
        self.lookup = lookup
        self.web = web

    async def resolve(
        self,
        address: str,
        postal_code: Optional[str],
        city: Optional[str],
    ) -> Optional[ResolvedIdentifier]:
        t0 = time.monotonic()
        tag = f"[BFE {address}]"
        postal = (postal_code or "").strip() or None
        city_name = normalize_city(city)

        access_id, strategy = await self._find_access_address(address, postal, city_name)

        if access_id:
            resolved = await self._bfe_from_access_address(access_id, strategy)
            if resolved:
                logger.info(
                    f"{tag} BFE {resolved.bfe_number} via {strategy} "
                    f"[{time.monotonic() - t0:.1f}s]"
                )
                return resolved
            logger.info(f"{tag} access address {access_id} has no parcel/BFE")
        else:
            logger.info(f"{tag} not found in address register")

        bfe = await self._bfe_from_web(address, postal, city_name)
        if bfe:
            logger.info(f"{tag} BFE {bfe} via web search [{time.monotonic() - t0:.1f}s]")
            return ResolvedIdentifier(bfe_number=bfe, strategy="web_search")

        logger.info(f"{tag} no BFE found [{time.monotonic() - t0:.1f}s]")
        return None

    async def _find_access_address(
        self,
        address: str,
        postal: Optional[str],
        city_name: str,
    ) -> Tuple[Optional[str], Optional[str]]:
        street, number = parse_street_address(address)
        if street and number:
            access_id = await self.lookup.structured_search(street, number, postal)
            if access_id:
                return access_id, "structured"

        full = " ".join(p for p in [f"{address.strip()},", postal, city_name] if p).rstrip(",")
        access_id = await self.lookup.fuzzy_search(full)
        if access_id:
            return access_id, "fuzzy"

        if postal or city_name:
            access_id = await self.lookup.fuzzy_search(address.strip())
            if access_id:
                return access_id, "address_only"

        return None, None

    async def _bfe_from_access_address(
        self, access_id: str, strategy: Optional[str]
    ) -> Optional[ResolvedIdentifier]:
        record = await self.lookup.access_address(access_id)
        if not record or not record.ejerlav_code or not record.matrikel_number:
            return None
        bfe = await self.lookup.parcel_bfe(record.ejerlav_code, record.matrikel_number)
        if not bfe:
            return None
        return ResolvedIdentifier(
            bfe_number=str(bfe),
            municipality=record.municipality_name,
            strategy=strategy or "structured",
            ejerlav_code=record.ejerlav_code,
            matrikel_number=record.matrikel_number,
        )

    async def _bfe_from_web(
        self, address: str, postal: Optional[str], city_name: str,
    ) -> Optional[str]:
        if not self.web:
            return None
        queries = [
            f'site:ois.dk "{address}" "{postal or ""}"'.replace(' ""', ""),
            f'ois.dk "{address}" {city_name} ejer BFE'.replace("  ", " "),
        ]
        for query in queries:
            results = await self.web.search(query, 5)
            bfe = extract_bfe(results)
            if bfe:
                return bfe
        return None
