"""OIS ownership registry.

Given a BFE number, OIS returns the registered owners (ejerdata), the
administrators (admindata) and the ownership code/text of the property.
OisOwnershipRegistry chains AddressResolver → OIS into an
OfficialOwnershipRecord.
"""

import time
from typing import Optional, List, Dict, Any, Tuple

import httpx
from loguru import logger

from services.ownership.models import OfficialOwnershipRecord, OwnerEntry
from services.ownership.resolver import AddressResolver
from services.ownership.locations import resolve_municipality_name
from services.ownership.retry import RetryPolicy

OIS_API = "https://ois.dk/api"

_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "Mozilla/5.0 (compatible; EjendomOwnership/1.0)",
}

# Placeholder OIS shows instead of protected owner names
_RESERVED_OWNER = "Forbeholdt ejer"


def _parse_entries(rows: Any) -> List[OwnerEntry]:
    entries: List[OwnerEntry] = []
    if not isinstance(rows, list):
        return entries
    for row in rows:
        if not isinstance(row, dict):
            continue
        name = (row.get("name") or "").strip()
        if not name or _RESERVED_OWNER in name:
            continue
        entries.append(OwnerEntry(name=name, is_primary=row.get("primaerKontakt") is True))
    return entries


class OisClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = OIS_API,
        retry: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.retry = retry or RetryPolicy()

    async def _get(self, path: str, bfe: str, timeout: float) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.retry.get(
                self.client, url, params={"bfe": bfe}, headers=_HEADERS, timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"OIS {path} failed for BFE {bfe}: {e}")
            return None
        if resp.status_code != 200:
            logger.warning(f"OIS {path} returned HTTP {resp.status_code} for BFE {bfe}")
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def get_owners(self, bfe: str) -> Optional[Tuple[List[OwnerEntry], List[OwnerEntry]]]:
        """(owners, administrators) or None when OIS has no owner data."""
        data = await self._get("/ejer/get", bfe, timeout=20.0)
        if data is None:
            return None
        return _parse_entries(data.get("ejerdata")), _parse_entries(data.get("admindata"))

    async def get_general_info(self, bfe: str) -> Dict[str, Optional[str]]:
        data = await self._get("/property/GetGeneralInfoFromBFE", bfe, timeout=15.0)
        if not data:
            return {}
        info = data.get("GeneralInfoSFE") or data.get("GeneralInfoBPFG") or data.get("GeneralInfoEJL")
        if not isinstance(info, dict):
            return {}
        code = info.get("ejendommensEjerforholdskode")
        return {
            "property_type": info.get("ejendomstype"),
            "ownership_code": str(code) if code is not None else None,
            "ownership_text": info.get("ejendommensEjerforholdstekst"),
            "municipality": info.get("kommunenavn_kode"),
        }


class OisOwnershipRegistry:
    """Implements IOwnershipRegistry: address → BFE → owners + ownership code."""

    def __init__(self, resolver: AddressResolver, ois: OisClient):
        self.resolver = resolver
        self.ois = ois

    async def resolve_ownership(
        self,
        address: str,
        postal_code: Optional[str],
        city: Optional[str],
    ) -> Optional[OfficialOwnershipRecord]:
        t0 = time.monotonic()
        resolved = await self.resolver.resolve(address, postal_code, city)
        if not resolved:
            return None

        owners = await self.ois.get_owners(resolved.bfe_number)
        if owners is None:
            logger.info(f"[OIS {resolved.bfe_number}] no owner data")
            return None
        owner_entries, admin_entries = owners
        info = await self.ois.get_general_info(resolved.bfe_number)

        # The address register's municipality name is cleaner than OIS "0101 København"
        municipality = resolved.municipality or resolve_municipality_name(info.get("municipality"))

        record = OfficialOwnershipRecord(
            bfe_number=resolved.bfe_number,
            owners=owner_entries,
            administrators=admin_entries,
            ownership_code=info.get("ownership_code"),
            ownership_text=info.get("ownership_text"),
            municipality=municipality,
        )
        logger.info(
            f"[OIS {record.bfe_number}] owners={record.owner_names or '-'} "
            f"admins={[a.name for a in record.administrators] or '-'} "
            f"code={record.ownership_code} [{time.monotonic() - t0:.1f}s]"
        )
        return record
