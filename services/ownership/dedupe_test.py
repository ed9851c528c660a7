"""Unit tests for cross-batch contact deduplication."""

import pytest

from services.ownership.config import DedupeLimits
from services.ownership.dedupe import (
    CrossBatchContactTracker,
    apply_cross_batch_penalty,
    best_contact_with_email,
    penalize_contact,
)
from services.ownership.models import CandidateContact, Relevance

SHARED = "info@deas.dk"


def contact(email=SHARED, confidence=0.9, relevance=Relevance.DIRECT, name=None) -> CandidateContact:
    return CandidateContact(name=name, email=email, confidence=confidence, relevance=relevance)


@pytest.mark.no_db
class TestTracker:

    def test_usage_excludes_current_property(self):
        tracker = CrossBatchContactTracker()
        tracker.record("Info@DEAS.dk", "p1")
        tracker.record(SHARED, "p1")
        tracker.record(SHARED, "p2")
        assert tracker.usage(SHARED) == 2
        assert tracker.usage(SHARED, "p2") == 1
        assert tracker.properties_for("INFO@deas.dk") == ["p1", "p2"]

    def test_record_ignores_missing_email(self):
        tracker = CrossBatchContactTracker()
        tracker.record(None, "p1")
        tracker.record("", "p1")
        assert len(tracker) == 0

    def test_reset(self):
        tracker = CrossBatchContactTracker()
        tracker.record(SHARED, "p1")
        tracker.reset()
        assert tracker.usage(SHARED) == 0
        assert len(tracker) == 0


@pytest.mark.no_db
class TestPenalizeContact:

    def test_first_use_unchanged(self):
        c = contact()
        assert penalize_contact(c, 0) == []
        assert c.confidence == 0.9
        assert c.relevance == Relevance.DIRECT

    def test_second_use_lowered_and_indirect(self):
        c = contact()
        notes = penalize_contact(c, 1)
        assert c.confidence == pytest.approx(0.65)
        assert c.relevance == Relevance.INDIRECT
        assert "already used for 1 other properties" in notes[0]

    def test_third_use_capped(self):
        c = contact()
        notes = penalize_contact(c, 2)
        assert c.confidence == 0.15
        assert c.relevance == Relevance.INDIRECT
        assert any("capped at 15%" in n for n in notes)

    def test_penalty_is_bounded(self):
        c = contact(confidence=1.0)
        penalize_contact(c, 10, DedupeLimits(hard_cutoff_match=100))
        assert c.confidence == pytest.approx(0.4)

    def test_floor(self):
        c = contact(confidence=0.1)
        penalize_contact(c, 1)
        assert c.confidence == 0.05

    def test_floor_never_raises(self):
        c = contact(confidence=0.03)
        penalize_contact(c, 1)
        assert c.confidence == 0.03

    def test_contact_without_email_untouched(self):
        c = contact(email=None, name="Jens Hansen")
        assert penalize_contact(c, 3) == []
        assert c.confidence == 0.9


@pytest.mark.no_db
class TestApplyCrossBatchPenalty:

    def test_third_property_gets_capped_indirect_contact(self):
        tracker = CrossBatchContactTracker()
        tracker.record(SHARED, "p1")
        tracker.record(SHARED, "p2")
        contacts = [contact(confidence=0.95), contact(email="jens@firma.dk", confidence=0.5, relevance=Relevance.INDIRECT)]

        ordered, notes = apply_cross_batch_penalty(contacts, "p3", tracker)

        shared = next(c for c in ordered if c.email == SHARED)
        assert shared.confidence <= 0.15
        assert shared.relevance == Relevance.INDIRECT
        assert ordered[0].email == "jens@firma.dk"
        assert notes

    def test_same_property_rerun_not_penalized(self):
        tracker = CrossBatchContactTracker()
        tracker.record(SHARED, "p1")
        ordered, notes = apply_cross_batch_penalty([contact()], "p1", tracker)
        assert notes == []
        assert ordered[0].confidence == 0.9

    def test_does_not_record_usage(self):
        tracker = CrossBatchContactTracker()
        apply_cross_batch_penalty([contact()], "p1", tracker)
        assert tracker.usage(SHARED) == 0


@pytest.mark.no_db
class TestBestContactWithEmail:

    def test_skips_contacts_without_email(self):
        contacts = [contact(email=None, name="Jens"), contact(email="mette@deas.dk")]
        assert best_contact_with_email(contacts).email == "mette@deas.dk"

    def test_none(self):
        assert best_contact_with_email([]) is None
        assert best_contact_with_email([contact(email=None, name="Jens")]) is None
