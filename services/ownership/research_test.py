"""Unit tests for per-property research."""

import pytest

from services.ownership.config import OwnershipConfig
from services.ownership.interfaces import (
    MockBusinessRegistry,
    MockOwnershipRegistry,
    MockWebEvidence,
)
from services.ownership.matcher import RegistryMatcher
from services.ownership.models import (
    OfficialOwnershipRecord,
    OwnerEntry,
    OwnershipType,
    PropertyRecord,
    RegistryCandidate,
    ScrapedPage,
    SearchResult,
)
from services.ownership.research import PropertyResearcher, build_search_queries, pick_urls

ADDRESS = "Vesterbrogade 10"


def property_record(**overrides) -> PropertyRecord:
    data = dict(property_id="p1", address=ADDRESS, postal_code="1620", city="København V")
    data.update(overrides)
    return PropertyRecord(**data)


def company(cvr="12345678", name="Vesterbro Ejendomme ApS", **overrides) -> RegistryCandidate:
    data = dict(cvr=cvr, name=name, address=ADDRESS, postal_code="1620", city="København V")
    data.update(overrides)
    return RegistryCandidate(**data)


def record(code="20", owners=("Vesterbro Ejendomme ApS",), admins=()) -> OfficialOwnershipRecord:
    return OfficialOwnershipRecord(
        bfe_number="100200",
        ownership_code=code,
        owners=[OwnerEntry(name=n, is_primary=i == 0) for i, n in enumerate(owners)],
        administrators=[OwnerEntry(name=n) for n in admins],
    )


def researcher(ownership=None, registry=None, web=None) -> PropertyResearcher:
    registry = registry or MockBusinessRegistry()
    return PropertyResearcher(
        MockOwnershipRegistry({ADDRESS: ownership} if ownership else {}),
        RegistryMatcher(registry),
        web,
        OwnershipConfig(),
    )


@pytest.mark.no_db
class TestHelpers:

    def test_queries_skip_private_owner_name(self):
        queries = build_search_queries(property_record(), "Jens Hansen", None, None, OwnershipType.PRIVATE_INDIVIDUAL)
        assert not any("Jens Hansen" in q for q in queries)
        assert queries[0] == '"Vesterbrogade 10" "1620" København V ejer'

    def test_queries_for_association(self):
        queries = build_search_queries(
            property_record(), "E/F Vesterbrogade 10", "DEAS A/S", None, OwnershipType.OWNERS_ASSOCIATION,
        )
        assert queries[0].startswith('"E/F Vesterbrogade 10"')
        assert queries[1].startswith('"DEAS A/S"')
        assert any("ejerforening andelsforening" in q for q in queries)

    def test_pick_urls_prefers_contact_pages_and_skips_directories(self):
        results = [
            SearchResult(url="https://firma.dk/nyheder"),
            SearchResult(url="https://www.proff.dk/firma/x"),
            SearchResult(url="https://firma.dk/kontakt"),
        ]
        assert pick_urls(results, 2) == ["https://firma.dk/kontakt", "https://firma.dk/nyheder"]


@pytest.mark.no_db
class TestPropertyResearcher:

    @pytest.mark.asyncio
    async def test_primary_owner_searched_first(self):
        registry = MockBusinessRegistry(by_name={"Vesterbro Ejendomme ApS": company()})
        result = await researcher(record(), registry).research(property_record())

        assert result.ownership_type == OwnershipType.COMPANY
        assert result.registry_match.candidate.cvr == "12345678"
        assert registry.name_queries == ["Vesterbro Ejendomme ApS"]

    @pytest.mark.asyncio
    async def test_administrator_after_owner(self):
        registry = MockBusinessRegistry(by_name={"DEAS A/S": company("87654321", "DEAS A/S")})
        result = await researcher(record(admins=("DEAS A/S",)), registry).research(property_record())

        assert registry.name_queries == ["Vesterbro Ejendomme ApS", "DEAS A/S"]
        assert result.registry_match.candidate.cvr == "87654321"

    @pytest.mark.asyncio
    async def test_private_owner_skips_registry(self):
        registry = MockBusinessRegistry(by_name={"Hansen Ejendomme ApS": company(name="Hansen Ejendomme ApS")})
        prop = property_record(owner_company_name="Hansen Ejendomme ApS", owner_company_cvr="12345678")
        result = await researcher(record("10", owners=("Jens Hansen",)), registry).research(prop)

        assert result.ownership_type == OwnershipType.PRIVATE_INDIVIDUAL
        assert result.registry_match is None
        assert registry.name_queries == []
        assert registry.number_queries == []

    @pytest.mark.asyncio
    async def test_prior_registry_number_used(self):
        registry = MockBusinessRegistry(by_number={"12345678": company()})
        result = await researcher(None, registry).research(property_record(owner_company_cvr="12345678"))

        assert result.ownership is None
        assert result.registry_match.score == 100
        assert registry.number_queries == ["12345678"]

    @pytest.mark.asyncio
    async def test_association_found_at_address(self):
        association = company("11111111", "E/F Vesterbrogade 10")
        registry = MockBusinessRegistry(by_name={"E/F Vesterbrogade 10": association})
        result = await researcher(record("40", owners=("Ejerforeningen",)), registry).research(property_record())

        assert result.ownership_type == OwnershipType.OWNERS_ASSOCIATION
        assert result.registry_match.candidate.cvr == "11111111"

    @pytest.mark.asyncio
    async def test_nothing_found(self):
        web = MockWebEvidence()
        result = await researcher(None, None, web).research(property_record())

        assert result.ownership is None
        assert result.ownership_type == OwnershipType.UNKNOWN
        assert result.registry_match is None
        assert result.collected.contacts == []
        assert len(result.collected.evidence) == 0
        assert len(web.queries) == 2

    @pytest.mark.asyncio
    async def test_web_evidence_collected(self):
        web = MockWebEvidence(
            default_results=[
                SearchResult(url="https://vesterbro-ejendomme.dk/kontakt", title="Kontakt",
                             snippet="Vesterbrogade 10, 1620 København V"),
                SearchResult(url="https://andet.dk", title="Noget helt andet"),
            ],
            pages={"https://vesterbro-ejendomme.dk/kontakt": ScrapedPage(
                url="https://vesterbro-ejendomme.dk/kontakt", emails=["jens@vesterbro-ejendomme.dk"],
            )},
        )
        result = await researcher(record(), None, web).research(property_record())

        assert [r.url for r in result.search_results] == ["https://vesterbro-ejendomme.dk/kontakt"]
        assert result.website_url == "https://vesterbro-ejendomme.dk/kontakt"
        assert result.collected.evidence.has_email("jens@vesterbro-ejendomme.dk")

    @pytest.mark.asyncio
    async def test_progress_events(self):
        events = []
        await researcher(record()).research(property_record(), events.append)
        assert events[0].message == "Ownership record found (BFE 100200)"
        assert all(e.phase == "researching" and e.property_id == "p1" for e in events)

    @pytest.mark.asyncio
    async def test_rejections_do_not_accumulate_across_properties(self):
        registry = MockBusinessRegistry(by_name={"Vesterbro Ejendomme ApS": company(name="Krogh Invest A/S")})
        research = researcher(record(), registry)

        first = await research.research(property_record())
        second = await research.research(property_record(property_id="p2"))

        assert first.registry_match is None
        assert len(first.rejected_matches) >= 1
        assert len(second.rejected_matches) == len(first.rejected_matches)
        assert research.matcher.rejections == second.rejected_matches
