"""Unit tests for ownership models."""

import pytest

from services.ownership.models import (
    AnalysisResult,
    CandidateContact,
    OfficialOwnershipRecord,
    OwnerEntry,
    PropertyRecord,
    Relevance,
    RunStatus,
    WorkflowRun,
    clamp_confidence,
)


@pytest.mark.no_db
class TestClampConfidence:

    def test_within_range_unchanged(self):
        assert clamp_confidence(0.42) == 0.42

    def test_clamped_to_bounds(self):
        assert clamp_confidence(1.7) == 1.0
        assert clamp_confidence(-0.3) == 0.0

    def test_nan_becomes_zero(self):
        assert clamp_confidence(float("nan")) == 0.0


@pytest.mark.no_db
class TestCandidateContact:

    def test_confidence_clamped_on_create(self):
        contact = CandidateContact(name="Jens Hansen", confidence=3.0)
        assert contact.confidence == 1.0

    def test_confidence_clamped_on_assignment(self):
        contact = CandidateContact(name="Jens Hansen", confidence=0.5)
        contact.confidence = contact.confidence - 0.9
        assert contact.confidence == 0.0

    def test_garbage_confidence_is_zero(self):
        contact = CandidateContact(name="Jens Hansen", confidence="very high")
        assert contact.confidence == 0.0

    def test_defaults_indirect(self):
        assert CandidateContact().relevance == Relevance.INDIRECT


@pytest.mark.no_db
class TestOwnershipRecord:

    def test_primary_owner_flagged(self):
        record = OfficialOwnershipRecord(
            bfe_number="100200",
            owners=[OwnerEntry(name="A ApS"), OwnerEntry(name="B ApS", is_primary=True)],
        )
        assert record.primary_owner.name == "B ApS"

    def test_primary_owner_falls_back_to_first(self):
        record = OfficialOwnershipRecord(
            bfe_number="100200", owners=[OwnerEntry(name="A ApS"), OwnerEntry(name="B ApS")],
        )
        assert record.primary_owner.name == "A ApS"
        assert record.owner_names == ["A ApS", "B ApS"]

    def test_no_owners(self):
        record = OfficialOwnershipRecord(bfe_number="100200")
        assert record.primary_owner is None
        assert record.primary_administrator is None


@pytest.mark.no_db
class TestMisc:

    def test_property_tag_truncates_address(self):
        prop = PropertyRecord(property_id="42", address="Meget Lang Vejnavn Med Mange Ord 123, 4. th, 2100")
        assert prop.tag.startswith("[42|")
        assert len(prop.tag) <= len("[42|]") + 40

    def test_best_contact_is_first(self):
        analysis = AnalysisResult(contacts=[
            CandidateContact(name="First"), CandidateContact(name="Second"),
        ])
        assert analysis.best_contact.name == "First"
        assert AnalysisResult().best_contact is None

    def test_run_terminal(self):
        run = WorkflowRun(property_id="1")
        assert not run.is_terminal
        run.status = RunStatus.CANCELLED
        assert run.is_terminal
