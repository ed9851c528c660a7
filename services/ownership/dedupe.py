"""Cross-batch contact deduplication.

A shared mailbox (an administrator's info@, a management company's
front desk) easily becomes the "best contact" for many unrelated
properties in one batch. Each reuse lowers the contact's confidence and
makes it indirect; from the third property onward it is capped near zero.

The tracker is batch-scoped state, injected into the workflow and reset at
the start of every batch.
"""

from typing import Optional, List, Dict, Tuple

from loguru import logger

from services.ownership.config import DedupeLimits
from services.ownership.models import CandidateContact, Relevance
from services.ownership.validator import sort_contacts


class CrossBatchContactTracker:
    """Which properties each finalized contact e-mail has been chosen for."""

    def __init__(self):
        self._uses: Dict[str, List[str]] = {}

    def reset(self) -> None:
        self._uses = {}

    def usage(self, email: Optional[str], property_id: Optional[str] = None) -> int:
        """Number of other properties this e-mail was already finalized for."""
        key = (email or "").strip().lower()
        return sum(1 for pid in self._uses.get(key, []) if pid != property_id)

    def properties_for(self, email: Optional[str]) -> List[str]:
        return list(self._uses.get((email or "").strip().lower(), []))

    def record(self, email: Optional[str], property_id: str) -> None:
        key = (email or "").strip().lower()
        if not key:
            return
        uses = self._uses.setdefault(key, [])
        if property_id not in uses:
            uses.append(property_id)

    def __len__(self) -> int:
        return len(self._uses)


def penalize_contact(
    contact: CandidateContact,
    prior: int,
    limits: Optional[DedupeLimits] = None,
) -> List[str]:
    """Apply the reuse penalty for `prior` earlier uses. Returns what changed."""
    limits = limits or DedupeLimits()
    notes: List[str] = []
    if prior < 1 or not contact.email:
        return notes

    old = contact.confidence
    penalty = min(prior * limits.penalty_per_reuse, limits.max_penalty)
    contact.confidence = max(old - penalty, min(old, limits.confidence_floor))
    contact.relevance = Relevance.INDIRECT
    notes.append(
        f"'{contact.email}' already used for {prior} other properties: "
        f"{round(old * 100)}% -> {round(contact.confidence * 100)}%, indirect"
    )

    # hard_cutoff_match is 1-based: the 3rd property has 2 prior uses
    if prior >= limits.hard_cutoff_match - 1 and contact.confidence > limits.hard_cutoff_cap:
        contact.confidence = limits.hard_cutoff_cap
        notes.append(
            f"'{contact.email}' seen for {prior + 1}+ properties: capped at "
            f"{round(limits.hard_cutoff_cap * 100)}%"
        )
    return notes


def apply_cross_batch_penalty(
    contacts: List[CandidateContact],
    property_id: str,
    tracker: CrossBatchContactTracker,
    limits: Optional[DedupeLimits] = None,
) -> Tuple[List[CandidateContact], List[str]]:
    """Penalize reused contacts and re-sort. Usage is recorded separately on finalization."""
    notes: List[str] = []
    for contact in contacts:
        notes.extend(penalize_contact(contact, tracker.usage(contact.email, property_id), limits))
    for note in notes:
        logger.info(f"[{property_id}] Dedupe: {note}")
    return sort_contacts(contacts), notes


def best_contact_with_email(contacts: List[CandidateContact]) -> Optional[CandidateContact]:
    """First contact with an e-mail in validated order (direct first, then confidence)."""
    for contact in contacts:
        if contact.email:
            return contact
    return None
