"""HubSpot client: the system of record for properties and contacts.

Properties live in the listings custom object (0-420). Every write is an
idempotent upsert: properties are keyed by HubSpot id, contacts by e-mail and
notes or tasks by their title on the contact. A batch that fails halfway can
simply be re-run.
"""

import os
import time
from typing import Optional, List, Dict, Any, Callable

import httpx
from loguru import logger

from services.ownership.errors import SystemOfRecordError
from services.ownership.models import PropertyRecord
from services.ownership.retry import RetryPolicy

HUBSPOT_BASE_URL = "https://api.hubapi.com"
PROPERTY_OBJECT_TYPE = "0-420"

PROPERTY_FIELDS = [
    "hs_name",
    "hs_address_1",
    "hs_zip",
    "hs_city",
    "virksomhed",
    "kontaktperson",
    "mailadresse",
    "telefonnummer",
    "outreach_status",
    "owner_company_name",
    "owner_company_cvr",
]


def property_from_record(record: Dict[str, Any]) -> Optional[PropertyRecord]:
    props = record.get("properties") or {}
    address = props.get("hs_address_1") or props.get("hs_name")
    if not record.get("id") or not address:
        return None
    return PropertyRecord(
        property_id=str(record["id"]),
        address=address.strip(),
        postal_code=(props.get("hs_zip") or "").strip() or None,
        city=(props.get("hs_city") or "").strip() or None,
        owner_company_name=props.get("owner_company_name") or props.get("virksomhed") or None,
        owner_company_cvr=props.get("owner_company_cvr") or None,
        contact_name=props.get("kontaktperson") or None,
        contact_email=props.get("mailadresse") or None,
    )


class HubSpotClient:
    """Implements ISystemOfRecord against the HubSpot CRM API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: Optional[str] = None,
        base_url: str = HUBSPOT_BASE_URL,
        retry: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.access_token = access_token or os.getenv("HUBSPOT_ACCESS_TOKEN")
        self.base_url = base_url.rstrip("/")
        self.retry = retry or RetryPolicy()

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise SystemOfRecordError("HUBSPOT_ACCESS_TOKEN not configured")
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    async def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.retry.request(
                self.client, method, url, headers=self._headers(), json=body, timeout=20.0,
            )
        except httpx.HTTPError as e:
            raise SystemOfRecordError(f"HubSpot {method} {path} failed: {e}") from e
        if resp.status_code >= 300:
            raise SystemOfRecordError(
                f"HubSpot {method} {path} failed ({resp.status_code})",
                {"status": resp.status_code, "body": resp.text[:500]},
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    async def fetch_properties(self, status: str, limit: int = 50) -> List[PropertyRecord]:
        data = await self._call("POST", f"/crm/v3/objects/{PROPERTY_OBJECT_TYPE}/search", {
            "filterGroups": [{
                "filters": [{"propertyName": "outreach_status", "operator": "EQ", "value": status}],
            }],
            "properties": PROPERTY_FIELDS,
            "limit": limit,
            "sorts": [{"propertyName": "hs_createdate", "direction": "ASCENDING"}],
        })
        properties = []
        for record in data.get("results") or []:
            prop = property_from_record(record)
            if prop:
                properties.append(prop)
            else:
                logger.warning(f"HubSpot record {record.get('id')} has no address, skipped")
        logger.info(f"HubSpot: {len(properties)} properties with status {status}")
        return properties

    async def update_fields(self, property_id: str, fields: Dict[str, str]) -> None:
        await self._call(
            "PATCH", f"/crm/v3/objects/{PROPERTY_OBJECT_TYPE}/{property_id}", {"properties": fields},
        )
        logger.debug(f"HubSpot: updated {property_id} ({', '.join(fields)})")

    async def _find_contact(self, email: str) -> Optional[str]:
        data = await self._call("POST", "/crm/v3/objects/contacts/search", {
            "filterGroups": [{"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}],
            "properties": ["email"],
            "limit": 1,
        })
        results = data.get("results") or []
        return str(results[0]["id"]) if results else None

    async def create_contact(
        self,
        property_id: str,
        name: Optional[str],
        email: str,
        phone: Optional[str],
    ) -> str:
        if not email:
            raise SystemOfRecordError(
                "HubSpot contact upsert needs an e-mail", {"property_id": property_id, "name": name},
            )
        parts = (name or "").split()
        properties = {"firstname": parts[0] if parts else "", "lastname": " ".join(parts[1:]), "email": email}
        if phone:
            properties["phone"] = phone

        existing = await self._find_contact(email)
        if existing:
            await self._call("PATCH", f"/crm/v3/objects/contacts/{existing}", {"properties": properties})
            logger.debug(f"HubSpot: updated contact {existing} for property {property_id}")
            return existing
        created = await self._call("POST", "/crm/v3/objects/contacts", {"properties": properties})
        contact_id = str(created.get("id", ""))
        if not contact_id:
            raise SystemOfRecordError("HubSpot contact create returned no id")
        logger.debug(f"HubSpot: created contact {contact_id} for property {property_id}")
        return contact_id

    async def _find_engagement(
        self, contact_id: str, kind: str, matches: Callable[[Dict[str, Any]], bool]
    ) -> Optional[str]:
        data = await self._call(
            "GET", f"/engagements/v1/engagements/associated/CONTACT/{contact_id}/paged?limit=100",
        )
        for item in data.get("results") or []:
            engagement = item.get("engagement") or {}
            if engagement.get("type") == kind and matches(item.get("metadata") or {}):
                return str(engagement.get("id", ""))
        return None

    async def _engagement(self, contact_id: str, kind: str, metadata: Dict[str, Any]) -> str:
        data = await self._call("POST", "/engagements/v1/engagements", {
            "engagement": {"active": True, "type": kind, "timestamp": int(time.time() * 1000)},
            "associations": {"contactIds": [int(contact_id)]},
            "metadata": metadata,
        })
        return str((data.get("engagement") or {}).get("id", ""))

    async def attach_note(self, contact_id: str, title: str, body: str) -> str:
        """One note per contact and title. A re-run updates nothing and returns the existing note."""
        heading = f"<strong>{title}</strong>"
        existing = await self._find_engagement(
            contact_id, "NOTE", lambda meta: (meta.get("body") or "").startswith(heading),
        )
        if existing:
            logger.debug(f"HubSpot: note '{title}' already on contact {contact_id}")
            return existing
        html = f"{heading}<br><br>{body.replace(chr(10), '<br>')}"
        return await self._engagement(contact_id, "NOTE", {"body": html})

    async def create_follow_up_task(self, contact_id: str, title: str) -> str:
        existing = await self._find_engagement(contact_id, "TASK", lambda meta: meta.get("subject") == title)
        if existing:
            logger.debug(f"HubSpot: task '{title}' already on contact {contact_id}")
            return existing
        return await self._engagement(contact_id, "TASK", {
            "subject": title,
            "body": title,
            "status": "NOT_STARTED",
            "forObjectType": "CONTACT",
        })
