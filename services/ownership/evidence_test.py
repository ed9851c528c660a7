"""Unit tests for evidence collection."""

import pytest

from services.ownership.evidence import (
    EvidenceSet,
    collect_evidence,
    emails_in_text,
    is_junk_email,
    names_overlap,
)
from services.ownership.models import (
    MatchResult,
    OfficialOwnershipRecord,
    OwnerEntry,
    RegistryCandidate,
    ScrapedPage,
    SearchResult,
)


def ownership_record() -> OfficialOwnershipRecord:
    return OfficialOwnershipRecord(
        bfe_number="100200",
        owners=[OwnerEntry(name="Vesterbro Ejendomme ApS", is_primary=True)],
        administrators=[OwnerEntry(name="DEAS A/S")],
        ownership_code="20",
    )


def registry_match() -> MatchResult:
    return MatchResult(
        candidate=RegistryCandidate(
            cvr="12345678", name="Vesterbro Ejendomme ApS",
            owners=["Jens Hansen", "Vesterbro Ejendomme ApS"],
            email="jens@vesterbro-ejendomme.dk", phone="33 12 34 56",
        ),
        score=85,
    )


@pytest.mark.no_db
class TestEmailHelpers:

    def test_emails_in_text_unique_keeps_case(self):
        text = "Skriv til Jens@Firma.dk eller jens@firma.dk. Alternativt post@firma.dk."
        assert emails_in_text(text) == ["Jens@Firma.dk", "post@firma.dk"]

    def test_junk_filtered(self):
        assert is_junk_email("noreply@firma.dk")
        assert is_junk_email("logo@2x.png")
        assert is_junk_email("12345@sentry.io")
        assert not is_junk_email("jens@firma.dk")
        assert emails_in_text("icon@retina.png og kontakt@firma.dk") == ["kontakt@firma.dk"]

    def test_names_overlap_prefix(self):
        assert names_overlap("Jens Hansen", "jens hansen")
        assert names_overlap("Vesterbro Ejendomme ApS", "Vesterbro Ejendomme")
        assert not names_overlap("Jens Hansen", "Mette Olsen")
        assert not names_overlap("", "Mette Olsen")


@pytest.mark.no_db
class TestEvidenceSet:

    def test_case_insensitive_and_first_source_wins(self):
        evidence = EvidenceSet()
        assert evidence.add_email("Jens@Firma.dk", "CVR")
        assert not evidence.add_email("jens@firma.dk", "website")
        assert evidence.has_email("JENS@FIRMA.DK")
        assert evidence.email_source("jens@firma.dk") == "CVR"

    def test_rejects_non_emails(self):
        evidence = EvidenceSet()
        assert not evidence.add_email("not an email", "x")
        assert not evidence.add_email(None, "x")
        assert len(evidence) == 0

    def test_name_substring_heuristic(self):
        evidence = EvidenceSet()
        evidence.add_name("Jens Peter Hansen", "OIS")
        assert evidence.has_name("Jens Peter Hansen")
        assert evidence.has_name("Jens P. Hansen")
        assert not evidence.has_name("Mette Olsen")

    def test_views_are_read_only(self):
        evidence = EvidenceSet()
        evidence.add_email("a@firma.dk", "x")
        with pytest.raises(TypeError):
            evidence.allowed_emails["b@firma.dk"] = "y"


@pytest.mark.no_db
class TestCollectEvidence:

    def test_contact_order_is_fixed(self):
        collected = collect_evidence(
            ownership_record(),
            registry_match(),
            pages=[ScrapedPage(
                url="https://vesterbro-ejendomme.dk/kontakt",
                emails=["info@vesterbro-ejendomme.dk", "jens@vesterbro-ejendomme.dk"],
                names=["Mette Olsen"],
            )],
            search_results=[SearchResult(
                url="https://proff.dk/x", title="Vesterbro Ejendomme", snippet="Mail: adm@deas.dk",
            )],
        )
        contacts = collected.contacts
        assert [c.role for c in contacts] == ["owner", "administrator", "owner", "other", "other"]
        assert contacts[0].name == "Vesterbro Ejendomme ApS"
        assert contacts[1].name == "DEAS A/S"
        assert contacts[2].name == "Jens Hansen"
        assert contacts[2].email == "jens@vesterbro-ejendomme.dk"
        assert contacts[2].phone == "33 12 34 56"
        assert contacts[3].email == "info@vesterbro-ejendomme.dk"
        assert contacts[4].email == "adm@deas.dk"

    def test_evidence_covers_every_source(self):
        collected = collect_evidence(
            ownership_record(),
            registry_match(),
            pages=[ScrapedPage(url="https://x.dk", emails=["info@x.dk"], names=["Mette Olsen"])],
        )
        evidence = collected.evidence
        assert evidence.has_email("jens@vesterbro-ejendomme.dk")
        assert evidence.has_email("info@x.dk")
        assert evidence.has_name("Mette Olsen")
        assert evidence.has_name("DEAS A/S")
        assert evidence.has_name("Jens Hansen")

    def test_page_names_are_evidence_but_not_contacts(self):
        collected = collect_evidence(None, None, pages=[ScrapedPage(url="https://x.dk", names=["Mette Olsen"])])
        assert collected.contacts == []
        assert collected.evidence.has_name("Mette Olsen")

    def test_nothing_found(self):
        collected = collect_evidence(None, None)
        assert collected.contacts == []
        assert len(collected.evidence) == 0
        assert collected.indexed() == []

    def test_indexed_shape(self):
        collected = collect_evidence(ownership_record(), None)
        assert collected.indexed()[1] == {
            "index": 1,
            "name": "DEAS A/S",
            "email": None,
            "phone": None,
            "source": "ownership registry (BFE 100200), administrator",
            "role_hint": "administrator",
        }
