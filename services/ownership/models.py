"""Data models for the ownership resolution pipeline."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 1]."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


# ── Input / registry records ────────────────────────────────────────


class PropertyRecord(BaseModel):
    """A property as it sits in the system of record. Immutable input to one run."""

    model_config = ConfigDict(frozen=True)

    property_id: str
    address: str
    postal_code: Optional[str] = None
    city: Optional[str] = None

    # Prior known owner fields (may be stale or wrong)
    owner_company_name: Optional[str] = None
    owner_company_cvr: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None

    @property
    def tag(self) -> str:
        return f"[{self.property_id}|{self.address[:40]}]"


class OwnerEntry(BaseModel):
    """An owner or administrator named in the ownership registry."""

    model_config = ConfigDict(frozen=True)

    name: str
    is_primary: bool = False
    address: Optional[str] = None
    cvr: Optional[str] = None


class OfficialOwnershipRecord(BaseModel):
    """Owners/administrators for one cadastral property (BFE)."""

    model_config = ConfigDict(frozen=True)

    bfe_number: str
    owners: list[OwnerEntry] = []
    administrators: list[OwnerEntry] = []
    ownership_code: Optional[str] = None  # "10", "20", "41", ...
    ownership_text: Optional[str] = None  # "Privatpersoner eller I/S", ...
    municipality: Optional[str] = None

    @property
    def primary_owner(self) -> Optional[OwnerEntry]:
        for owner in self.owners:
            if owner.is_primary:
                return owner
        return self.owners[0] if self.owners else None

    @property
    def primary_administrator(self) -> Optional[OwnerEntry]:
        for admin in self.administrators:
            if admin.is_primary:
                return admin
        return self.administrators[0] if self.administrators else None

    @property
    def owner_names(self) -> list[str]:
        return [o.name for o in self.owners]


class AccessAddress(BaseModel):
    """DAWA access address with its cadastral parcel reference."""

    access_address_id: str
    ejerlav_code: Optional[str] = None
    matrikel_number: Optional[str] = None
    municipality_name: Optional[str] = None
    municipality_code: Optional[str] = None


class ResolvedIdentifier(BaseModel):
    """Result of address → cadastral identifier resolution."""

    bfe_number: str
    municipality: Optional[str] = None
    strategy: str  # structured, fuzzy, address_only, web_search
    ejerlav_code: Optional[str] = None
    matrikel_number: Optional[str] = None


class OwnershipType(str, Enum):
    COMPANY = "company"
    HOUSING_COOPERATIVE = "housing_cooperative"
    OWNERS_ASSOCIATION = "owners_association"
    PRIVATE_INDIVIDUAL = "private_individual"
    SOCIAL_HOUSING = "social_housing"
    GOVERNMENT = "government"
    UNKNOWN = "unknown"


class RegistryStrategy(BaseModel):
    """How to use the business registry for a given ownership type."""

    model_config = ConfigDict(frozen=True)

    should_search_registry: bool
    require_address_match: bool
    accept_private_owner: bool
    max_candidates: int
    reason: str


class RegistryCandidate(BaseModel):
    """Unscored entry from the business registry (CVR)."""

    cvr: str
    name: str
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    municipality: Optional[str] = None
    status: Optional[str] = None
    owners: list[str] = []
    email: Optional[str] = None
    phone: Optional[str] = None
    industry: Optional[str] = None
    source: str = "cvrapi"  # cvrapi, proff
    raw: Dict[str, Any] = {}


class MatchScore(BaseModel):
    score: int = Field(ge=0, le=100)
    reasons: list[str] = []


class MatchResult(BaseModel):
    """A scored registry candidate. Only accepted results are ever attached."""

    candidate: RegistryCandidate
    score: int
    reasons: list[str] = []
    query: Optional[str] = None


# ── Web evidence ────────────────────────────────────────────────────


class SearchResult(BaseModel):
    title: str = ""
    url: str
    snippet: str = ""


class ScrapedPage(BaseModel):
    url: str
    title: str = ""
    emails: list[str] = []
    phones: list[str] = []
    names: list[str] = []
    text_snippets: list[str] = []


# ── Evidence / contacts ─────────────────────────────────────────────


class Relevance(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"


class DataQualityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RawContact(BaseModel):
    """A contact exactly as observed in a source, before any model sees it."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    source: str


class CandidateContact(BaseModel):
    """A ranked contact. Confidence is clamped on every assignment."""

    model_config = ConfigDict(validate_assignment=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    relevance: Relevance = Relevance.INDIRECT
    confidence: float = 0.0
    source: str = ""
    reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        try:
            return clamp_confidence(float(value))
        except (TypeError, ValueError):
            return 0.0


class OwnerAssessment(BaseModel):
    """Phase-1 model output after strict decoding. Untrusted."""

    owner_name: Optional[str] = None
    owner_cvr: Optional[str] = None
    score: Optional[int] = None
    quality_tier: Optional[DataQualityTier] = None
    reason: Optional[str] = None
    key_insights: Optional[str] = None


class AnalysisResult(BaseModel):
    """Combined analysis for one property. Mutated only by validator and dedupe."""

    model_config = ConfigDict(validate_assignment=True)

    owner_name: str = "unknown"
    owner_cvr: Optional[str] = None
    score: int = 0
    quality_tier: DataQualityTier = DataQualityTier.LOW
    quality_reason: str = ""
    key_insights: str = ""
    contacts: list[CandidateContact] = []

    @property
    def best_contact(self) -> Optional[CandidateContact]:
        return self.contacts[0] if self.contacts else None


class EmailDraft(BaseModel):
    subject: str
    body_text: str
    internal_note: str = ""


# ── Workflow ────────────────────────────────────────────────────────


class OutreachStatus(str, Enum):
    """Values of the property's outreach_status field in the system of record."""

    NEEDS_RESEARCH = "NY_KRAEVER_RESEARCH"
    RESEARCH_IN_PROGRESS = "RESEARCH_IGANGSAT"
    CONTACT_PENDING = "RESEARCH_DONE_CONTACT_PENDING"
    READY_FOR_OUTREACH = "KLAR_TIL_UDSENDELSE"
    ERROR = "FEJL"


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepLog(BaseModel):
    step_id: str
    name: str
    status: StepStatus = StepStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    details: Optional[str] = None


class WorkflowRun(BaseModel):
    """Execution log for one property. Terminal once completed/failed/cancelled."""

    property_id: str
    address: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    steps: list[StepLog] = []
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING


class ProgressEvent(BaseModel):
    """Emitted to the injected progress sink. Carries no control flow back."""

    phase: str
    message: str
    detail: Optional[str] = None
    percent: Optional[int] = None
    property_id: Optional[str] = None
