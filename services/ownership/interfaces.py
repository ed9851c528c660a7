"""Service interfaces consumed by the ownership pipeline.

Each external collaborator is a Protocol with an in-memory Mock next to it.
Concrete implementations live in lib/ (registries, web, llm) and infra/.
"""

from typing import (
    Optional, List, Dict, Any, Callable, Protocol, runtime_checkable,
)

from loguru import logger

from services.ownership.errors import SystemOfRecordError
from services.ownership.models import (
    AccessAddress,
    OfficialOwnershipRecord,
    PropertyRecord,
    ProgressEvent,
    RegistryCandidate,
    ScrapedPage,
    SearchResult,
)


ProgressSink = Callable[[ProgressEvent], None]


def notify(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    """Deliver a progress event. A failing sink is logged, never raised into the pipeline."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.warning(f"Progress sink failed on {event.phase} event: {type(e).__name__}: {e}")


# ── Address lookup (DAWA) ───────────────────────────────────────────


@runtime_checkable
class IAddressLookup(Protocol):
    """Primitive address-register queries. Each tries primary then mirror endpoint."""

    async def structured_search(
        self, street: str, house_number: str, postal_code: Optional[str],
    ) -> Optional[str]:
        """Access-address id for street + house number [+ postal code]."""
        ...

    async def fuzzy_search(self, query: str) -> Optional[str]:
        """Access-address id for a free-text query."""
        ...

    async def access_address(self, access_address_id: str) -> Optional[AccessAddress]:
        ...

    async def parcel_bfe(self, ejerlav_code: str, matrikel_number: str) -> Optional[str]:
        ...


class MockAddressLookup:
    """Canned address register. Queries are recorded in call order."""

    def __init__(
        self,
        structured: Optional[Dict[str, str]] = None,
        fuzzy: Optional[Dict[str, str]] = None,
        addresses: Optional[Dict[str, AccessAddress]] = None,
        parcels: Optional[Dict[str, str]] = None,
    ):
        self.structured = structured or {}  # "street|number|postal" → id
        self.fuzzy = fuzzy or {}            # query → id
        self.addresses = addresses or {}    # id → AccessAddress
        self.parcels = parcels or {}        # "ejerlav|matrikel" → BFE
        self.calls: List[str] = []

    async def structured_search(
        self, street: str, house_number: str, postal_code: Optional[str],
    ) -> Optional[str]:
        key = f"{street}|{house_number}|{postal_code or ''}"
        self.calls.append(f"structured:{key}")
        return self.structured.get(key)

    async def fuzzy_search(self, query: str) -> Optional[str]:
        self.calls.append(f"fuzzy:{query}")
        return self.fuzzy.get(query)

    async def access_address(self, access_address_id: str) -> Optional[AccessAddress]:
        self.calls.append(f"address:{access_address_id}")
        return self.addresses.get(access_address_id)

    async def parcel_bfe(self, ejerlav_code: str, matrikel_number: str) -> Optional[str]:
        self.calls.append(f"parcel:{ejerlav_code}|{matrikel_number}")
        return self.parcels.get(f"{ejerlav_code}|{matrikel_number}")


# ── Ownership registry (DAWA + OIS) ─────────────────────────────────


@runtime_checkable
class IOwnershipRegistry(Protocol):
    """Address → official owners/administrators of the cadastral property."""

    async def resolve_ownership(
        self,
        address: str,
        postal_code: Optional[str],
        city: Optional[str],
    ) -> Optional[OfficialOwnershipRecord]:
        ...


class MockOwnershipRegistry:
    """Returns canned records keyed by address (case-insensitive)."""

    def __init__(self, records: Optional[Dict[str, OfficialOwnershipRecord]] = None):
        self.records = {k.lower(): v for k, v in (records or {}).items()}
        self.calls: List[str] = []

    async def resolve_ownership(
        self,
        address: str,
        postal_code: Optional[str],
        city: Optional[str],
    ) -> Optional[OfficialOwnershipRecord]:
        self.calls.append(address)
        return self.records.get(address.lower())


# ── Business registry (CVR) ─────────────────────────────────────────


@runtime_checkable
class IBusinessRegistry(Protocol):
    """Unscored lookups against the business registry."""

    async def lookup_by_name(self, name: str) -> Optional[RegistryCandidate]:
        ...

    async def lookup_by_number(self, cvr: str) -> Optional[RegistryCandidate]:
        ...


@runtime_checkable
class IDirectoryFallback(Protocol):
    """Secondary company directory. Only asked once the primary path fails."""

    async def find_registry_number(self, name: str) -> Optional[str]:
        ...


class MockBusinessRegistry:
    """In-memory business registry. Name lookups are case-insensitive."""

    def __init__(
        self,
        by_name: Optional[Dict[str, RegistryCandidate]] = None,
        by_number: Optional[Dict[str, RegistryCandidate]] = None,
    ):
        self.by_name = {k.lower(): v for k, v in (by_name or {}).items()}
        self.by_number = dict(by_number or {})
        for candidate in self.by_name.values():
            self.by_number.setdefault(candidate.cvr, candidate)
        self.name_queries: List[str] = []
        self.number_queries: List[str] = []

    async def lookup_by_name(self, name: str) -> Optional[RegistryCandidate]:
        self.name_queries.append(name)
        return self.by_name.get(name.lower())

    async def lookup_by_number(self, cvr: str) -> Optional[RegistryCandidate]:
        self.number_queries.append(cvr)
        return self.by_number.get(cvr)


class MockDirectory:
    def __init__(self, numbers: Optional[Dict[str, str]] = None):
        self.numbers = {k.lower(): v for k, v in (numbers or {}).items()}
        self.queries: List[str] = []

    async def find_registry_number(self, name: str) -> Optional[str]:
        self.queries.append(name)
        return self.numbers.get(name.lower())


# ── Generative analysis ─────────────────────────────────────────────


@runtime_checkable
class IAnalysisService(Protocol):
    """Raw generative-model calls. Replies are untrusted, undecoded JSON objects."""

    async def assess_ownership(self, findings: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    async def rank_contacts(
        self,
        context: Dict[str, Any],
        indexed_contacts: List[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        ...

    async def draft_email(self, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...


class MockAnalysisService:
    """Returns canned replies and records what it was shown."""

    def __init__(
        self,
        assessment: Optional[Dict[str, Any]] = None,
        ranking: Optional[Dict[str, Any]] = None,
        draft: Optional[Dict[str, Any]] = None,
    ):
        self.assessment = assessment
        self.ranking = ranking
        self.draft = draft
        self.findings_seen: List[Dict[str, Any]] = []
        self.contacts_seen: List[List[Dict[str, Any]]] = []
        self.draft_calls = 0

    async def assess_ownership(self, findings: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.findings_seen.append(findings)
        return self.assessment

    async def rank_contacts(
        self,
        context: Dict[str, Any],
        indexed_contacts: List[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        self.contacts_seen.append(indexed_contacts)
        return self.ranking

    async def draft_email(self, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.draft_calls += 1
        return self.draft


# ── Web evidence ────────────────────────────────────────────────────


@runtime_checkable
class IWebEvidence(Protocol):
    async def search(self, query: str, num: int = 5) -> List[SearchResult]:
        ...

    async def scrape(self, url: str) -> Optional[ScrapedPage]:
        ...


class MockWebEvidence:
    """Canned search results per query (or a default list) and pages per URL."""

    def __init__(
        self,
        results: Optional[Dict[str, List[SearchResult]]] = None,
        pages: Optional[Dict[str, ScrapedPage]] = None,
        default_results: Optional[List[SearchResult]] = None,
    ):
        self.results = results or {}
        self.pages = pages or {}
        self.default_results = default_results or []
        self.queries: List[str] = []
        self.scraped: List[str] = []

    async def search(self, query: str, num: int = 5) -> List[SearchResult]:
        self.queries.append(query)
        return list(self.results.get(query, self.default_results))[:num]

    async def scrape(self, url: str) -> Optional[ScrapedPage]:
        self.scraped.append(url)
        return self.pages.get(url)


@runtime_checkable
class IMailDomainCheck(Protocol):
    async def has_mx(self, domain: str) -> bool:
        ...


class MockMailDomainCheck:
    """Every domain has MX records except the ones listed in `dead`."""

    def __init__(self, dead: Optional[List[str]] = None):
        self.dead = {d.lower() for d in (dead or [])}
        self.checked: List[str] = []

    async def has_mx(self, domain: str) -> bool:
        self.checked.append(domain)
        return domain.lower() not in self.dead


# ── System of record (CRM) ──────────────────────────────────────────


@runtime_checkable
class ISystemOfRecord(Protocol):
    """Idempotent upserts keyed by property id, contact e-mail, or note/task title per contact."""

    async def fetch_properties(self, status: str, limit: int = 50) -> List[PropertyRecord]:
        ...

    async def update_fields(self, property_id: str, fields: Dict[str, str]) -> None:
        ...

    async def create_contact(
        self,
        property_id: str,
        name: Optional[str],
        email: str,
        phone: Optional[str],
    ) -> str:
        ...

    async def attach_note(self, contact_id: str, title: str, body: str) -> str:
        ...

    async def create_follow_up_task(self, contact_id: str, title: str) -> str:
        ...


class MockSystemOfRecord:
    """Keeps every write in memory. Upserts follow the same keys as the real CRM client."""

    def __init__(self, properties: Optional[List[PropertyRecord]] = None, fail_on: Optional[str] = None):
        self.properties = list(properties or [])
        self.fields: Dict[str, Dict[str, str]] = {}
        self.contacts: Dict[str, Dict[str, Optional[str]]] = {}
        self.notes: List[Dict[str, str]] = []
        self.tasks: List[Dict[str, str]] = []
        self.fail_on = fail_on  # property id whose update raises
        self._next_id = 1

    @property
    def write_count(self) -> int:
        return len(self.fields) + len(self.contacts) + len(self.notes) + len(self.tasks)

    async def fetch_properties(self, status: str, limit: int = 50) -> List[PropertyRecord]:
        return self.properties[:limit]

    async def update_fields(self, property_id: str, fields: Dict[str, str]) -> None:
        if self.fail_on and property_id == self.fail_on:
            raise RuntimeError(f"update failed for {property_id}")
        self.fields.setdefault(property_id, {}).update(fields)

    async def create_contact(
        self,
        property_id: str,
        name: Optional[str],
        email: str,
        phone: Optional[str],
    ) -> str:
        if not email:
            raise SystemOfRecordError("contact upsert needs an e-mail", {"property_id": property_id})
        key = email.lower()
        existing = self.contacts.get(key)
        if existing:
            existing.update({"name": name, "phone": phone})
            return existing["id"]
        contact_id = str(self._next_id)
        self._next_id += 1
        self.contacts[key] = {
            "id": contact_id, "property_id": property_id,
            "name": name, "email": email, "phone": phone,
        }
        return contact_id

    async def attach_note(self, contact_id: str, title: str, body: str) -> str:
        for i, note in enumerate(self.notes, 1):
            if (note["contact_id"], note["title"]) == (contact_id, title):
                return f"note-{i}"
        self.notes.append({"contact_id": contact_id, "title": title, "body": body})
        return f"note-{len(self.notes)}"

    async def create_follow_up_task(self, contact_id: str, title: str) -> str:
        for i, task in enumerate(self.tasks, 1):
            if (task["contact_id"], task["title"]) == (contact_id, title):
                return f"task-{i}"
        self.tasks.append({"contact_id": contact_id, "title": title})
        return f"task-{len(self.tasks)}"
