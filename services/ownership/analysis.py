"""Two-phase constrained analysis.

Phase 1 (owner assessment) sees only structured official findings: the
ownership record, the deterministic classification and the accepted
registry match. No web text, no contact candidates.

Phase 2 (contact ranking) sees an index-numbered list of contacts that were
actually collected and may only answer with back-references to those
indices. It has no channel to introduce a new name or e-mail.

Model replies are untrusted. They are decoded through strict pydantic
schemas that fail closed: a malformed field is treated as not provided,
a reference to a non-existent index is rejected and logged, never repaired.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Type, TypeVar, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from services.ownership.errors import LLMUnavailable
from services.ownership.evidence import CollectedEvidence
from services.ownership.interfaces import IAnalysisService
from services.ownership.models import (
    AnalysisResult,
    CandidateContact,
    DataQualityTier,
    EmailDraft,
    MatchResult,
    OfficialOwnershipRecord,
    OwnerAssessment,
    OwnershipType,
    PropertyRecord,
    Relevance,
)

M = TypeVar("M", bound=BaseModel)

UNKNOWN_OWNER = "unknown"
_UNKNOWN_MARKERS = {"", "unknown", "ukendt", "null", "none", "n/a"}


# ── Reply schemas ───────────────────────────────────────────────────


class _AssessmentReply(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    owner_name: Optional[str] = None
    owner_cvr: Optional[str] = None
    score: Optional[int] = None
    quality_tier: Optional[DataQualityTier] = None
    reason: Optional[str] = None
    key_insights: Optional[str] = None

    @field_validator("owner_cvr")
    @classmethod
    def _cvr_digits(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not (len(value) == 8 and value.isdigit()):
            raise ValueError("registry number must be 8 digits")
        return value

    @field_validator("score")
    @classmethod
    def _score_range(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and not 1 <= value <= 10:
            raise ValueError("score must be 1-10")
        return value

    @field_validator("quality_tier", mode="before")
    @classmethod
    def _tier_enum(cls, value: Any) -> Any:
        # strict mode refuses plain strings for enums
        if isinstance(value, str):
            return DataQualityTier(value)
        return value


class _RankedEntry(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    index: int
    confidence: Optional[float] = None
    relevance: Optional[Relevance] = None
    role: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("relevance", mode="before")
    @classmethod
    def _relevance_enum(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Relevance(value)
        return value


class _DraftReply(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    subject: str
    body_text: str
    internal_note: Optional[str] = None


def decode_fail_closed(model: Type[M], raw: Any, label: str) -> Optional[M]:
    """Validate `raw` against `model`, dropping every field that fails.

    Returns None when `raw` is not an object or a required field is unusable.
    """
    if not isinstance(raw, dict):
        logger.warning(f"{label}: reply is not a JSON object, ignored")
        return None
    data = {k: v for k, v in raw.items() if k in model.model_fields}
    while True:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
            required = {name for name, f in model.model_fields.items() if f.is_required()}
            if not bad or bad & required:
                logger.warning(f"{label}: unusable reply ({e.error_count()} errors), ignored")
                return None
            for key in bad:
                logger.warning(f"{label}: field '{key}' malformed ({data.get(key)!r}), treated as not provided")
                data.pop(key, None)


# ── Index references ────────────────────────────────────────────────


@dataclass(frozen=True)
class ValidIndexReference:
    index: int
    confidence: Optional[float] = None
    relevance: Optional[Relevance] = None
    role: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class RejectedReference:
    raw: Any
    reason: str


RankedReference = Union[ValidIndexReference, RejectedReference]


def parse_ranked_references(reply: Any, contact_count: int) -> List[RankedReference]:
    """Turn a Phase-2 reply into tagged references against a list of `contact_count` items."""
    if not isinstance(reply, dict):
        return []
    items = reply.get("ranked_contacts")
    if not isinstance(items, list):
        return []

    refs: List[RankedReference] = []
    seen: set = set()
    for item in items:
        entry = decode_fail_closed(_RankedEntry, item, "Contact ranking")
        if entry is None:
            refs.append(RejectedReference(raw=item, reason="malformed entry or non-integer index"))
        elif not 0 <= entry.index < contact_count:
            refs.append(RejectedReference(
                raw=item, reason=f"index {entry.index} outside 0..{contact_count - 1}",
            ))
        elif entry.index in seen:
            refs.append(RejectedReference(raw=item, reason=f"duplicate index {entry.index}"))
        else:
            seen.add(entry.index)
            refs.append(ValidIndexReference(
                index=entry.index,
                confidence=entry.confidence,
                relevance=entry.relevance,
                role=entry.role,
                reason=entry.reason,
            ))
    return refs


# ── Inputs for the model ────────────────────────────────────────────


def build_findings(
    property: PropertyRecord,
    ownership: Optional[OfficialOwnershipRecord],
    ownership_type: OwnershipType,
    registry_match: Optional[MatchResult],
) -> Dict[str, Any]:
    """Structured official findings for Phase 1. Deliberately excludes e-mails and web text."""
    findings: Dict[str, Any] = {
        "property": {
            "address": property.address,
            "postal_code": property.postal_code,
            "city": property.city,
        },
        "ownership_type": ownership_type.value,
        "ownership_record": None,
        "registry_match": None,
    }
    if ownership:
        findings["ownership_record"] = {
            "bfe_number": ownership.bfe_number,
            "owners": [{"name": o.name, "primary": o.is_primary} for o in ownership.owners],
            "administrators": [{"name": a.name, "primary": a.is_primary} for a in ownership.administrators],
            "ownership_text": ownership.ownership_text,
            "municipality": ownership.municipality,
        }
    if registry_match:
        c = registry_match.candidate
        findings["registry_match"] = {
            "cvr": c.cvr,
            "name": c.name,
            "address": ", ".join(p for p in (c.address, c.postal_code, c.city) if p),
            "status": c.status,
            "industry": c.industry,
            "owners": list(c.owners),
            "match_score": registry_match.score,
        }
    return findings


def _known_owner(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip().lower() in _UNKNOWN_MARKERS:
        return None
    return value.strip()


# ── Analyzer ────────────────────────────────────────────────────────


class ContactAnalyzer:
    """Composes both phases into an AnalysisResult built only from collected contacts."""

    def __init__(self, service: Optional[IAnalysisService]):
        self.service = service
        self.rejected: List[RejectedReference] = []

    async def assess_owner(self, findings: Dict[str, Any]) -> Optional[OwnerAssessment]:
        if self.service is None:
            return None
        try:
            raw = await self.service.assess_ownership(findings)
        except LLMUnavailable as e:
            logger.warning(f"Owner assessment unavailable: {e}")
            return None
        if raw is None:
            return None
        reply = decode_fail_closed(_AssessmentReply, raw, "Owner assessment")
        if reply is None:
            return None
        return OwnerAssessment(
            owner_name=_known_owner(reply.owner_name),
            owner_cvr=reply.owner_cvr,
            score=reply.score,
            quality_tier=reply.quality_tier,
            reason=reply.reason,
            key_insights=reply.key_insights,
        )

    async def rank_contacts(
        self,
        context: Dict[str, Any],
        collected: CollectedEvidence,
    ) -> List[RankedReference]:
        if self.service is None or not collected.contacts:
            return []
        try:
            raw = await self.service.rank_contacts(context, collected.indexed())
        except LLMUnavailable as e:
            logger.warning(f"Contact ranking unavailable: {e}")
            return []
        refs = parse_ranked_references(raw, len(collected.contacts))
        for ref in refs:
            if isinstance(ref, RejectedReference):
                self.rejected.append(ref)
                logger.warning(f"Contact ranking: discarded reference {ref.raw!r} ({ref.reason})")
        return refs

    async def analyze(
        self,
        property: PropertyRecord,
        ownership: Optional[OfficialOwnershipRecord],
        ownership_type: OwnershipType,
        registry_match: Optional[MatchResult],
        collected: CollectedEvidence,
    ) -> AnalysisResult:
        self.rejected = []
        findings = build_findings(property, ownership, ownership_type, registry_match)
        assessment = await self.assess_owner(findings)

        owner_name = assessment.owner_name if assessment else None
        if assessment is None:
            # No usable model reply: fall back to what the registries say
            if registry_match:
                owner_name = registry_match.candidate.name
            elif ownership and ownership.primary_owner:
                owner_name = ownership.primary_owner.name

        result = AnalysisResult(
            owner_name=owner_name or UNKNOWN_OWNER,
            owner_cvr=assessment.owner_cvr if assessment else None,
            score=(assessment.score or 0) if assessment else 0,
            # The validator only ever lowers the tier, so no claim starts at medium
            quality_tier=(assessment.quality_tier if assessment else None) or DataQualityTier.MEDIUM,
            quality_reason=(assessment.reason or "") if assessment else "no owner assessment available",
            key_insights=(assessment.key_insights or "") if assessment else "",
        )
        if result.owner_cvr is None and registry_match and assessment is None:
            result.owner_cvr = registry_match.candidate.cvr

        context = {
            "address": f"{property.address}, {property.postal_code or ''} {property.city or ''}".strip(),
            "owner_name": result.owner_name,
            "owner_cvr": result.owner_cvr,
            "registry_owners": ownership.owner_names if ownership else [],
            "registry_administrators": [a.name for a in ownership.administrators] if ownership else [],
        }
        refs = await self.rank_contacts(context, collected)

        contacts: List[CandidateContact] = []
        for ref in refs:
            if not isinstance(ref, ValidIndexReference):
                continue
            raw = collected.contacts[ref.index]
            contacts.append(CandidateContact(
                name=raw.name,
                email=raw.email,
                phone=raw.phone,
                role=ref.role or raw.role,
                relevance=ref.relevance or Relevance.INDIRECT,
                confidence=ref.confidence if ref.confidence is not None else 0.0,
                source=raw.source,
                reason=ref.reason or "",
            ))
        result.contacts = contacts

        logger.info(
            f"{property.tag} Analysis: owner='{result.owner_name}' tier={result.quality_tier.value} "
            f"{len(contacts)}/{len(collected.contacts)} contacts referenced, "
            f"{len(self.rejected)} references rejected"
        )
        return result


async def draft_outreach_email(
    service: Optional[IAnalysisService],
    property: PropertyRecord,
    contact: CandidateContact,
    analysis: AnalysisResult,
) -> Optional[EmailDraft]:
    """Outreach draft for an already validated contact. Never sent automatically."""
    if service is None or not contact.email:
        return None
    context = {
        "address": property.address,
        "postal_code": property.postal_code,
        "city": property.city,
        "owner_name": analysis.owner_name,
        "contact_name": contact.name,
        "contact_role": contact.role,
        "key_insights": analysis.key_insights,
    }
    try:
        raw = await service.draft_email(context)
    except LLMUnavailable as e:
        logger.warning(f"{property.tag} Email draft unavailable: {e}")
        return None
    if raw is None:
        return None
    reply = decode_fail_closed(_DraftReply, raw, "Email draft")
    if reply is None or not reply.subject.strip() or not reply.body_text.strip():
        return None
    return EmailDraft(
        subject=reply.subject.strip(),
        body_text=reply.body_text.strip(),
        internal_note=(reply.internal_note or "").strip(),
    )
