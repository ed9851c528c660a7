"""Evidence-based validation of model output.

Model output is untrusted. Every contact and owner claim is checked against
what was actually observed (EvidenceSet, ownership record, registry match)
and corrected downward where it is not supported. Corrections are returned
as a readable audit list, never applied silently.

Rules, in order:
  1. E-mails not in the evidence set are stripped, confidence capped
  2. Syntactically invalid e-mails are stripped, confidence capped
  3. Names not in the evidence set are capped at "plausible but unverified"
  4. Owner name must match the ownership record or the registry match,
     otherwise it becomes "unknown" and the tier cannot stay high
  5. Quality tier: high needs record + registry match + a verified contact,
     any missing leg means medium, no record means low. Never raised.
  6. Generic mailboxes (info@, kontakt@, ...) are capped low
  7. Contacts with neither name nor e-mail are dropped
  8. Direct before indirect, then confidence descending

Running the validator on its own output yields no further corrections.
"""

from dataclasses import dataclass, field
from typing import Optional, List

from services.ownership.config import ValidationLimits
from services.ownership.evidence import EvidenceSet, names_overlap
from services.ownership.models import (
    AnalysisResult,
    CandidateContact,
    DataQualityTier,
    MatchResult,
    OfficialOwnershipRecord,
    Relevance,
)

UNKNOWN_OWNER = "unknown"
INVALID_EMAIL_MARKERS = ("@ukendt", "@unknown", "@null")

_TIER_RANK = {DataQualityTier.LOW: 0, DataQualityTier.MEDIUM: 1, DataQualityTier.HIGH: 2}


@dataclass
class ValidationOutcome:
    analysis: AnalysisResult
    corrections: List[str] = field(default_factory=list)


def is_invalid_email(email: str) -> bool:
    lower = email.strip().lower()
    if any(marker in lower for marker in INVALID_EMAIL_MARKERS):
        return True
    if len(lower) < 6 or lower.count("@") != 1:
        return True
    local, domain = lower.split("@")
    return not local or "." not in domain


def is_generic_mailbox(email: Optional[str], limits: ValidationLimits) -> bool:
    if not email or "@" not in email:
        return False
    return email.split("@")[0].strip().lower() in limits.generic_prefixes


def sort_contacts(contacts: List[CandidateContact]) -> List[CandidateContact]:
    return sorted(contacts, key=lambda c: (c.relevance != Relevance.DIRECT, -c.confidence))


def _pct(value: float) -> str:
    return f"{round(value * 100)}%"


def _lower_tier(current: DataQualityTier, ceiling: DataQualityTier) -> DataQualityTier:
    return current if _TIER_RANK[current] <= _TIER_RANK[ceiling] else ceiling


def validate_analysis(
    analysis: AnalysisResult,
    evidence: EvidenceSet,
    ownership: Optional[OfficialOwnershipRecord],
    registry_match: Optional[MatchResult],
    limits: Optional[ValidationLimits] = None,
) -> ValidationOutcome:
    """Returns a cleaned copy of `analysis` and the corrections made. Input is not modified."""
    limits = limits or ValidationLimits()
    cleaned = analysis.model_copy(deep=True)
    corrections: List[str] = []

    # 1-2. E-mails
    for contact in cleaned.contacts:
        if not contact.email:
            continue
        email = contact.email
        if not evidence.has_email(email):
            old = contact.confidence
            contact.email = None
            contact.confidence = min(old, limits.fabricated_email_cap)
            corrections.append(
                f"Removed e-mail '{email}' for {contact.name or 'unnamed contact'}: "
                f"not found in any source (confidence {_pct(old)} -> {_pct(contact.confidence)})"
            )
        elif is_invalid_email(email):
            old = contact.confidence
            contact.email = None
            contact.confidence = min(old, limits.invalid_email_cap)
            corrections.append(
                f"Removed invalid e-mail '{email}' for {contact.name or 'unnamed contact'} "
                f"(confidence {_pct(old)} -> {_pct(contact.confidence)})"
            )

    # 3. Names
    for contact in cleaned.contacts:
        if not contact.name or evidence.has_name(contact.name, limits.name_prefix_length):
            continue
        if contact.confidence > limits.unverified_name_cap:
            old = contact.confidence
            contact.confidence = limits.unverified_name_cap
            corrections.append(
                f"Lowered '{contact.name}' from {_pct(old)} to {_pct(contact.confidence)}: "
                f"name not found in any source"
            )

    # 4. Owner cross-check
    if cleaned.owner_name.strip().lower() != UNKNOWN_OWNER:
        known = list(ownership.owner_names) if ownership else []
        if registry_match:
            known.append(registry_match.candidate.name)
        if not any(names_overlap(cleaned.owner_name, k, limits.name_prefix_length) for k in known):
            corrections.append(
                f"Owner '{cleaned.owner_name}' matches neither the ownership record nor the "
                f"business registry: set to unknown"
            )
            cleaned.owner_name = UNKNOWN_OWNER
            if cleaned.owner_cvr:
                corrections.append(f"Cleared registry number {cleaned.owner_cvr} of unverified owner")
                cleaned.owner_cvr = None
            if cleaned.quality_tier == DataQualityTier.HIGH:
                cleaned.quality_tier = DataQualityTier.MEDIUM
                corrections.append("Quality tier high -> medium: owner could not be verified")

    if cleaned.owner_cvr:
        matched_cvr = registry_match.candidate.cvr if registry_match else None
        if matched_cvr is None:
            corrections.append(
                f"Cleared registry number {cleaned.owner_cvr}: no accepted registry match"
            )
            cleaned.owner_cvr = None
        elif cleaned.owner_cvr != matched_cvr:
            corrections.append(
                f"Corrected registry number {cleaned.owner_cvr} -> {matched_cvr} (accepted registry match)"
            )
            cleaned.owner_cvr = matched_cvr

    # 5. Quality tier
    verified = any(
        c.email
        and not is_generic_mailbox(c.email, limits)
        and c.confidence >= limits.verified_contact_confidence
        for c in cleaned.contacts
    )
    if ownership is None:
        ceiling, why = DataQualityTier.LOW, "no ownership record"
    elif registry_match is None:
        ceiling, why = DataQualityTier.MEDIUM, "no registry match"
    elif not verified:
        ceiling, why = DataQualityTier.MEDIUM, "no verified contact"
    else:
        ceiling, why = DataQualityTier.HIGH, ""
    tier = _lower_tier(cleaned.quality_tier, ceiling)
    if tier != cleaned.quality_tier:
        corrections.append(f"Quality tier {cleaned.quality_tier.value} -> {tier.value}: {why}")
        cleaned.quality_tier = tier
        cleaned.quality_reason = f"{cleaned.quality_reason} [validator: {why}]".strip()

    # 6. Generic mailboxes
    for contact in cleaned.contacts:
        if is_generic_mailbox(contact.email, limits) and contact.confidence > limits.generic_mailbox_cap:
            old = contact.confidence
            contact.confidence = limits.generic_mailbox_cap
            corrections.append(
                f"Lowered generic mailbox '{contact.email}' from {_pct(old)} to {_pct(contact.confidence)}"
            )

    # 7. Empty contacts
    kept: List[CandidateContact] = []
    for contact in cleaned.contacts:
        if contact.name or contact.email:
            kept.append(contact)
        else:
            corrections.append(f"Dropped contact without name or e-mail (source: {contact.source or '?'})")

    # 8. Ordering
    cleaned.contacts = sort_contacts(kept)

    return ValidationOutcome(analysis=cleaned, corrections=corrections)
