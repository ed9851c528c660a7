"""
Ownership pipeline configuration models.

Weights, thresholds and confidence ceilings are empirically tuned. They live
here so they can be overridden per run without touching the algorithms.
"""

import os
from typing import List, Dict

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class MatchWeights(BaseModel):
    """Rubric for scoring a registry candidate against a property."""

    exact_name: int = Field(default=40, description="Normalized names are equal")
    name_contains: int = Field(default=30, description="One normalized name contains the other")
    token_overlap_max: int = Field(default=25, description="Max points for proportional token overlap")
    token_overlap_min_ratio: float = Field(
        default=0.5, description="Overlap ratio below this earns no points"
    )
    postal_code: int = Field(default=15, description="Postal code exact match")
    street: int = Field(default=20, description="Street name found in candidate address")
    municipality: int = Field(default=15, description="Municipality contained or known alias")
    region_penalty: int = Field(default=20, description="Penalty when postal region digit differs")
    keyword_bonus: int = Field(default=10, description="Property-type keyword in legal name")

    threshold: int = Field(default=35, description="Candidates scoring below this are discarded")

    property_keywords: List[str] = Field(
        default_factory=lambda: [
            "ejendom", "bolig", "invest", "holding", "kapital",
            "ejerforening", "andelsbolig",
        ],
        description="Legal-name terms that suggest a property owner",
    )
    municipality_aliases: List[List[str]] = Field(
        default_factory=lambda: [
            ["københavn", "kbh", "copenhagen", "frederiksberg"],
            ["aarhus", "århus"],
            ["aalborg", "ålborg"],
        ],
        description="Groups of municipality names treated as equivalent",
    )


class ValidationLimits(BaseModel):
    """Confidence ceilings applied by the evidence validator."""

    fabricated_email_cap: float = Field(default=0.15, description="Email not in evidence")
    invalid_email_cap: float = Field(default=0.1, description="Syntactically invalid email")
    unverified_name_cap: float = Field(default=0.4, description="Name not in evidence")
    generic_mailbox_cap: float = Field(default=0.3, description="info@, kontakt@, ...")
    verified_contact_confidence: float = Field(
        default=0.6, description="Minimum confidence for a contact to count as verified"
    )
    name_prefix_length: int = Field(
        default=6, description="Prefix length used by the name substring heuristic"
    )
    generic_prefixes: List[str] = Field(
        default_factory=lambda: [
            "info", "kontakt", "contact", "mail", "post",
            "kontor", "office", "hello", "admin",
        ],
    )


class DedupeLimits(BaseModel):
    """Cross-batch reuse penalties."""

    penalty_per_reuse: float = Field(default=0.25)
    max_penalty: float = Field(default=0.6)
    confidence_floor: float = Field(default=0.05)
    hard_cutoff_match: int = Field(
        default=3, description="From this match onward (1-based) the contact is capped"
    )
    hard_cutoff_cap: float = Field(default=0.15)


class QualityGate(BaseModel):
    """Thresholds for recommending a researched property for outreach."""

    min_confidence: float = Field(default=0.7, description="Unless quality tier is high")
    indirect_min_confidence: float = Field(default=0.8)


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, description="Seconds before the first retry")
    max_delay: float = Field(default=8.0)
    jitter: float = Field(default=0.25, description="Fraction of the delay added at random")


class OwnershipConfig(BaseModel):
    """
    Process-wide configuration for the ownership pipeline.

    Build with OwnershipConfig.from_env() in workflows, or construct directly in tests.
    """

    safe_mode: bool = Field(
        default=False, description="Run research and analysis but never write externally"
    )
    supported_cities_only: bool = Field(
        default=True, description="Skip properties outside the supported-city allowlist"
    )
    email_hunt: bool = Field(default=True, description="Run the optional email hunt step")
    draft_emails: bool = Field(default=True, description="Generate an outreach draft")

    run_history_size: int = Field(default=50, description="Recent WorkflowRuns kept")
    raw_research_size: int = Field(default=100, description="Raw research results kept")
    max_search_queries: int = Field(default=4)
    max_scrape_urls: int = Field(default=3)

    match: MatchWeights = Field(default_factory=MatchWeights)
    validation: ValidationLimits = Field(default_factory=ValidationLimits)
    dedupe: DedupeLimits = Field(default_factory=DedupeLimits)
    gate: QualityGate = Field(default_factory=QualityGate)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @classmethod
    def from_env(cls) -> "OwnershipConfig":
        overrides: Dict[str, object] = {
            "safe_mode": _env_bool("RESEARCH_SAFE_MODE", False),
            "supported_cities_only": _env_bool("RESEARCH_SUPPORTED_CITIES_ONLY", True),
            "email_hunt": _env_bool("RESEARCH_EMAIL_HUNT", True),
            "draft_emails": _env_bool("RESEARCH_DRAFT_EMAILS", True),
        }
        threshold = os.getenv("CVR_MATCH_THRESHOLD")
        if threshold:
            overrides["match"] = MatchWeights(threshold=int(threshold))
        return cls(**overrides)
