"""Unit tests for the two-phase constrained analysis."""

import pytest

from services.ownership.analysis import (
    ContactAnalyzer,
    RejectedReference,
    ValidIndexReference,
    _AssessmentReply,
    build_findings,
    decode_fail_closed,
    draft_outreach_email,
    parse_ranked_references,
)
from services.ownership.errors import LLMUnavailable
from services.ownership.evidence import collect_evidence
from services.ownership.interfaces import MockAnalysisService
from services.ownership.models import (
    AnalysisResult,
    CandidateContact,
    DataQualityTier,
    MatchResult,
    OfficialOwnershipRecord,
    OwnerEntry,
    OwnershipType,
    PropertyRecord,
    RegistryCandidate,
    Relevance,
    ScrapedPage,
)

PROPERTY = PropertyRecord(property_id="p1", address="Vesterbrogade 10", postal_code="1620", city="København V")


def ownership_record() -> OfficialOwnershipRecord:
    return OfficialOwnershipRecord(
        bfe_number="100200",
        owners=[OwnerEntry(name="Vesterbro Ejendomme ApS", is_primary=True)],
        administrators=[OwnerEntry(name="DEAS A/S")],
    )


def registry_match() -> MatchResult:
    return MatchResult(
        candidate=RegistryCandidate(
            cvr="12345678", name="Vesterbro Ejendomme ApS", owners=["Jens Hansen"],
            email="jens@vesterbro-ejendomme.dk",
        ),
        score=85,
    )


def five_contacts():
    """Ownership owner, admin, CVR contact and two website e-mails."""
    return collect_evidence(
        ownership_record(),
        registry_match(),
        pages=[ScrapedPage(url="https://deas.dk", emails=["info@deas.dk", "mette@deas.dk"])],
    )


class FailingAnalysisService(MockAnalysisService):
    async def assess_ownership(self, findings):
        raise LLMUnavailable("not configured")

    async def rank_contacts(self, context, indexed_contacts):
        raise LLMUnavailable("not configured")


@pytest.mark.no_db
class TestDecodeFailClosed:

    def test_valid_reply(self):
        reply = decode_fail_closed(_AssessmentReply, {
            "owner_name": "Vesterbro Ejendomme ApS", "owner_cvr": "12345678",
            "score": 7, "quality_tier": "high", "reason": "ok",
        }, "test")
        assert reply.quality_tier == DataQualityTier.HIGH
        assert reply.score == 7

    def test_malformed_fields_treated_as_not_provided(self):
        reply = decode_fail_closed(_AssessmentReply, {
            "owner_name": "Vesterbro Ejendomme ApS",
            "owner_cvr": "1234",
            "score": "seven",
            "quality_tier": "excellent",
        }, "test")
        assert reply.owner_name == "Vesterbro Ejendomme ApS"
        assert reply.owner_cvr is None
        assert reply.score is None
        assert reply.quality_tier is None

    def test_score_out_of_range_dropped(self):
        reply = decode_fail_closed(_AssessmentReply, {"score": 42}, "test")
        assert reply.score is None

    def test_not_an_object(self):
        assert decode_fail_closed(_AssessmentReply, ["owner"], "test") is None
        assert decode_fail_closed(_AssessmentReply, "unknown", "test") is None


@pytest.mark.no_db
class TestParseRankedReferences:

    def test_out_of_range_index_rejected(self):
        refs = parse_ranked_references({"ranked_contacts": [
            {"index": 1, "confidence": 0.8, "relevance": "direct"},
            {"index": 7, "confidence": 0.9, "relevance": "direct"},
        ]}, 5)
        assert isinstance(refs[0], ValidIndexReference)
        assert isinstance(refs[1], RejectedReference)
        assert refs[1].reason == "index 7 outside 0..4"

    def test_negative_duplicate_and_non_integer(self):
        refs = parse_ranked_references({"ranked_contacts": [
            {"index": -1},
            {"index": 2},
            {"index": 2},
            {"index": "2"},
            {"index": 1.0},
            "garbage",
        ]}, 5)
        assert [type(r).__name__ for r in refs] == [
            "RejectedReference", "ValidIndexReference", "RejectedReference",
            "RejectedReference", "RejectedReference", "RejectedReference",
        ]
        assert refs[2].reason == "duplicate index 2"

    def test_bad_optional_fields_do_not_reject_reference(self):
        refs = parse_ranked_references({"ranked_contacts": [
            {"index": 0, "confidence": "high", "relevance": "maybe", "role": "owner"},
        ]}, 1)
        assert refs == [ValidIndexReference(index=0, role="owner")]

    def test_missing_list(self):
        assert parse_ranked_references({"contacts": []}, 3) == []
        assert parse_ranked_references(None, 3) == []


@pytest.mark.no_db
class TestBuildFindings:

    def test_no_emails_or_web_text(self):
        findings = build_findings(PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match())
        assert "@" not in str(findings)
        assert findings["ownership_type"] == "company"
        assert findings["registry_match"]["cvr"] == "12345678"
        assert findings["ownership_record"]["administrators"] == [{"name": "DEAS A/S", "primary": False}]

    def test_empty_findings(self):
        findings = build_findings(PROPERTY, None, OwnershipType.UNKNOWN, None)
        assert findings["ownership_record"] is None
        assert findings["registry_match"] is None


@pytest.mark.no_db
class TestContactAnalyzer:

    @pytest.mark.asyncio
    async def test_out_of_range_reference_absent_from_output(self):
        collected = five_contacts()
        assert len(collected.contacts) == 5
        service = MockAnalysisService(
            assessment={"owner_name": "Vesterbro Ejendomme ApS", "quality_tier": "high", "score": 6},
            ranking={"ranked_contacts": [
                {"index": 2, "confidence": 0.8, "relevance": "direct", "role": "owner", "reason": "CVR"},
                {"index": 7, "confidence": 0.95, "relevance": "direct", "reason": "invented"},
            ]},
        )
        analyzer = ContactAnalyzer(service)
        result = await analyzer.analyze(
            PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match(), collected,
        )

        assert len(result.contacts) == 1
        assert result.contacts[0].email == "jens@vesterbro-ejendomme.dk"
        assert result.contacts[0].name == "Jens Hansen"
        assert len(analyzer.rejected) == 1
        assert "index 7" in analyzer.rejected[0].reason

    @pytest.mark.asyncio
    async def test_phase_two_sees_only_collected_contacts(self):
        collected = five_contacts()
        service = MockAnalysisService(assessment={}, ranking={"ranked_contacts": []})
        await ContactAnalyzer(service).analyze(
            PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match(), collected,
        )
        assert service.contacts_seen == [collected.indexed()]
        assert "@" not in str(service.findings_seen[0])

    @pytest.mark.asyncio
    async def test_contact_fields_come_from_evidence_not_model(self):
        collected = five_contacts()
        service = MockAnalysisService(
            assessment={},
            ranking={"ranked_contacts": [
                {"index": 4, "confidence": 0.6, "relevance": "indirect", "name": "Someone Else",
                 "email": "ceo@invented.dk"},
            ]},
        )
        result = await ContactAnalyzer(service).analyze(
            PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match(), collected,
        )
        assert result.contacts[0].email == "mette@deas.dk"
        assert result.contacts[0].name is None
        assert result.contacts[0].relevance == Relevance.INDIRECT

    @pytest.mark.asyncio
    async def test_missing_confidence_and_relevance(self):
        collected = five_contacts()
        service = MockAnalysisService(assessment={}, ranking={"ranked_contacts": [{"index": 0}]})
        result = await ContactAnalyzer(service).analyze(
            PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match(), collected,
        )
        assert result.contacts[0].confidence == 0.0
        assert result.contacts[0].relevance == Relevance.INDIRECT
        assert result.contacts[0].role == "owner"

    @pytest.mark.asyncio
    async def test_unavailable_model_falls_back_to_registries(self):
        result = await ContactAnalyzer(FailingAnalysisService()).analyze(
            PROPERTY, ownership_record(), OwnershipType.COMPANY, registry_match(), five_contacts(),
        )
        assert result.owner_name == "Vesterbro Ejendomme ApS"
        assert result.owner_cvr == "12345678"
        assert result.quality_tier == DataQualityTier.MEDIUM
        assert result.contacts == []

    @pytest.mark.asyncio
    async def test_unknown_owner_marker(self):
        service = MockAnalysisService(assessment={"owner_name": "Ukendt"}, ranking={"ranked_contacts": []})
        result = await ContactAnalyzer(service).analyze(
            PROPERTY, None, OwnershipType.UNKNOWN, None, collect_evidence(None, None),
        )
        assert result.owner_name == "unknown"

    @pytest.mark.asyncio
    async def test_no_service_no_evidence(self):
        result = await ContactAnalyzer(None).analyze(
            PROPERTY, None, OwnershipType.UNKNOWN, None, collect_evidence(None, None),
        )
        assert result.owner_name == "unknown"
        assert result.contacts == []


@pytest.mark.no_db
class TestDraftOutreachEmail:

    @pytest.mark.asyncio
    async def test_draft(self):
        service = MockAnalysisService(draft={
            "subject": " Facadeplads på Vesterbrogade 10 ", "body_text": "Kære Jens ...", "internal_note": "varm",
        })
        contact = CandidateContact(name="Jens Hansen", email="jens@vesterbro-ejendomme.dk")
        draft = await draft_outreach_email(service, PROPERTY, contact, AnalysisResult())
        assert draft.subject == "Facadeplads på Vesterbrogade 10"
        assert draft.internal_note == "varm"

    @pytest.mark.asyncio
    async def test_no_email_no_draft(self):
        service = MockAnalysisService(draft={"subject": "x", "body_text": "y"})
        assert await draft_outreach_email(service, PROPERTY, CandidateContact(name="Jens"), AnalysisResult()) is None
        assert service.draft_calls == 0

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self):
        service = MockAnalysisService(draft={"subject": "Hej", "body_text": "   "})
        contact = CandidateContact(name="Jens Hansen", email="jens@vesterbro-ejendomme.dk")
        assert await draft_outreach_email(service, PROPERTY, contact, AnalysisResult()) is None
