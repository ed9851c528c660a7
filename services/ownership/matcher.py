"""Scored business-registry matching.

Every name-based registry hit is scored 0-100 against what we know about the
property (owner name, street, postal code, municipality). Candidates below
the threshold are discarded and only their reasons are kept for audit.

Lookup order for one name:
  1. Primary registry by name, scored
  2. Directory fallback (only when step 1 yields no accepted match) →
     registry number → registry lookup, scored the same way

A wrong match is worse than no match.
"""

import re
import time
from typing import Optional, Sequence

from loguru import logger

from services.ownership.config import MatchWeights
from services.ownership.interfaces import IBusinessRegistry, IDirectoryFallback
from services.ownership.models import MatchResult, MatchScore, RegistryCandidate

CVR_NUMBER_RE = re.compile(r"^\d{8}$")

_LEGAL_SUFFIX = re.compile(r"(?<!\w)(aps|a/s|as|i/s|k/s|p/s|smba|ivs)(?!\w)", re.I)
_CORE_NOISE = re.compile(
    r"(?<!\w)(aps|a/s|as|i/s|k/s|p/s|smba|ivs|holding|invest|ejendomsselskab|"
    r"ejendomme|ejendom|kapital|fond|selskab)(?!\w)",
    re.I,
)


def normalize_name(name: str) -> str:
    """Lowercase, keep letters/digits/spaces, collapse whitespace."""
    cleaned = re.sub(r"[^a-zæøå0-9\s]", "", (name or "").lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def _compact(name: str) -> str:
    return normalize_name(name).replace(" ", "")


def _core_name(name: str) -> str:
    return re.sub(r"[^a-zæøå0-9]", "", _CORE_NOISE.sub(" ", (name or "").lower()))


def street_of(address: str) -> str:
    """'Vesterbrogade 12, 2. tv' → 'vesterbrogade'."""
    return re.sub(r"\s*\d+.*$", "", (address or "").lower()).strip()


def company_names_match(name_a: str, name_b: str) -> bool:
    """True when two legal names denote the same company.

    Strict on purpose: 'Krogh Ejendomme' and 'Krogh Invest' share a core but
    are different companies unless the cores match exactly.
    """
    a = normalize_name(_LEGAL_SUFFIX.sub(" ", (name_a or "").lower()))
    b = normalize_name(_LEGAL_SUFFIX.sub(" ", (name_b or "").lower()))
    if a and a == b:
        return True

    core_a, core_b = _core_name(name_a), _core_name(name_b)
    if core_a == core_b and len(core_a) >= 3:
        return True

    shorter, longer = sorted((core_a, core_b), key=len)
    if len(shorter) >= 5 and len(shorter) / len(longer) >= 0.7 and shorter in longer:
        return True

    if abs(len(core_a) - len(core_b)) <= 2 and len(core_a) > 5:
        same = sum(1 for x, y in zip(shorter, longer) if x == y)
        if same / len(longer) >= 0.9:
            return True

    return False


def _candidate_location(candidate: RegistryCandidate) -> str:
    parts = [candidate.address, candidate.postal_code, candidate.city, candidate.municipality]
    return ", ".join(p for p in parts if p).lower()


def _candidate_postal(candidate: RegistryCandidate, location: str) -> Optional[str]:
    if candidate.postal_code and re.fullmatch(r"\d{4}", candidate.postal_code.strip()):
        return candidate.postal_code.strip()
    m = re.search(r"\b(\d{4})\b", location)
    return m.group(1) if m else None


def score_candidate(
    candidate: RegistryCandidate,
    expected_name: str,
    expected_address: Optional[str] = None,
    expected_postal: Optional[str] = None,
    expected_municipality: Optional[str] = None,
    weights: Optional[MatchWeights] = None,
) -> MatchScore:
    """Explainable 0-100 score for one registry candidate."""
    w = weights or MatchWeights()
    score = 0
    reasons: list[str] = []

    # ── Name ──
    want, got = _compact(expected_name), _compact(candidate.name)
    if want and want == got:
        score += w.exact_name
        reasons.append(f"exact name match (+{w.exact_name})")
    elif want and got and (want in got or got in want):
        score += w.name_contains
        reasons.append(f"name containment (+{w.name_contains})")
    else:
        want_tokens = {t for t in normalize_name(expected_name).split() if len(t) > 2}
        got_tokens = {t for t in normalize_name(candidate.name).split() if len(t) > 2}
        overlap = len(want_tokens & got_tokens)
        ratio = overlap / max(len(want_tokens), len(got_tokens), 1)
        if ratio >= w.token_overlap_min_ratio:
            points = round(ratio * w.token_overlap_max)
            score += points
            reasons.append(f"token overlap {ratio:.0%} (+{points})")

    # ── Address ──
    location = _candidate_location(candidate)
    postal = (expected_postal or "").strip()
    if postal and postal in location:
        score += w.postal_code
        reasons.append(f"same postal code {postal} (+{w.postal_code})")

    street = street_of(expected_address or "")
    if street and street in location:
        score += w.street
        reasons.append(f"same street '{street}' (+{w.street})")

    if expected_municipality:
        municipality = expected_municipality.lower().strip()
        if municipality and municipality in location:
            score += w.municipality
            reasons.append(f"same municipality '{expected_municipality}' (+{w.municipality})")
        else:
            aliases: Sequence[str] = [municipality]
            for group in w.municipality_aliases:
                if municipality in group:
                    aliases = group
                    break
            if any(a and a in location for a in aliases):
                score += w.municipality
                reasons.append(f"municipality alias match (+{w.municipality})")

    # ── Penalties / bonuses ──
    candidate_postal = _candidate_postal(candidate, location)
    if postal and candidate_postal and postal[:1] != candidate_postal[:1]:
        score -= w.region_penalty
        reasons.append(f"different region {candidate_postal} vs {postal} (-{w.region_penalty})")

    if any(k in got for k in w.property_keywords):
        score += w.keyword_bonus
        reasons.append(f"property-related company name (+{w.keyword_bonus})")

    return MatchScore(score=max(0, min(100, score)), reasons=reasons)


def has_address_evidence(reasons: Sequence[str]) -> bool:
    return any(r.startswith(("same postal code", "same street")) for r in reasons)


class RegistryMatcher:
    """Scored matching against the business registry with a directory fallback."""

    def __init__(
        self,
        registry: IBusinessRegistry,
        directory: Optional[IDirectoryFallback] = None,
        weights: Optional[MatchWeights] = None,
    ):
        self.registry = registry
        self.directory = directory
        self.weights = weights or MatchWeights()
        # Discarded candidates with their reasons since the last clear, newest last
        self.rejections: list[MatchResult] = []

    @property
    def threshold(self) -> int:
        return self.weights.threshold

    def clear_rejections(self) -> None:
        self.rejections = []

    async def match_by_number(self, cvr: str) -> Optional[MatchResult]:
        """Direct registry-number lookup. Trusted: score 100, no rubric."""
        cvr = (cvr or "").strip()
        if not CVR_NUMBER_RE.match(cvr):
            return None
        candidate = await self.registry.lookup_by_number(cvr)
        if not candidate:
            logger.info(f"CVR {cvr}: not found")
            return None
        return MatchResult(
            candidate=candidate, score=100,
            reasons=["direct registry number lookup"], query=cvr,
        )

    async def match_by_name(
        self,
        name: str,
        expected_address: Optional[str] = None,
        expected_postal: Optional[str] = None,
        expected_municipality: Optional[str] = None,
        strict_name: bool = False,
        require_address: bool = False,
        use_fallback: bool = True,
    ) -> Optional[MatchResult]:
        """Best accepted match for a name, or None."""
        name = (name or "").strip()
        if not name:
            return None
        if CVR_NUMBER_RE.match(name):
            return await self.match_by_number(name)

        t0 = time.monotonic()
        candidate = await self.registry.lookup_by_name(name)
        result = self._evaluate(
            candidate, name, expected_address, expected_postal,
            expected_municipality, strict_name, require_address,
        )
        if result:
            logger.info(
                f"CVR match '{result.candidate.name}' ({result.candidate.cvr}) "
                f"score={result.score} for '{name}' [{time.monotonic() - t0:.1f}s]"
            )
            return result

        if not use_fallback or not self.directory:
            return None

        cvr = await self.directory.find_registry_number(name)
        if not cvr:
            logger.debug(f"Directory fallback: nothing for '{name}'")
            return None
        candidate = await self.registry.lookup_by_number(cvr)
        result = self._evaluate(
            candidate, name, expected_address, expected_postal,
            expected_municipality, strict_name, require_address,
        )
        if result:
            result.reasons.append("found via directory fallback")
            logger.info(
                f"CVR match via directory '{result.candidate.name}' ({cvr}) score={result.score}"
            )
        return result

    async def match_by_address(
        self,
        address: str,
        expected_postal: Optional[str] = None,
        expected_municipality: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """Look for a cooperative/association registered at the address itself.

        Tries the usual naming patterns and keeps only the best accepted result.
        """
        street = street_of(address)
        if not street:
            return None
        variants = [
            f"A/B {address}",
            f"E/F {address}",
            f"{street.title()} ejerforening",
            f"{street.title()} andelsbolig",
        ]

        best: Optional[MatchResult] = None
        for variant in variants:
            candidate = await self.registry.lookup_by_name(variant)
            if not candidate:
                continue
            # Scored against the address, not the variant text
            result = self._evaluate(
                candidate, address, address, expected_postal,
                expected_municipality, strict_name=False, require_address=True,
                query=variant,
            )
            if result and (best is None or result.score > best.score):
                best = result

        if best:
            logger.info(
                f"CVR address search: '{best.candidate.name}' score={best.score} "
                f"via '{best.query}'"
            )
        return best

    def _evaluate(
        self,
        candidate: Optional[RegistryCandidate],
        name: str,
        expected_address: Optional[str],
        expected_postal: Optional[str],
        expected_municipality: Optional[str],
        strict_name: bool,
        require_address: bool,
        query: Optional[str] = None,
    ) -> Optional[MatchResult]:
        if candidate is None:
            return None

        scored = score_candidate(
            candidate, name, expected_address, expected_postal,
            expected_municipality, self.weights,
        )
        result = MatchResult(
            candidate=candidate, score=scored.score,
            reasons=list(scored.reasons), query=query or name,
        )

        if strict_name and not company_names_match(name, candidate.name):
            result.reasons.append(f"name mismatch: searched '{name}', got '{candidate.name}'")
            return self._reject(result)
        if require_address and not has_address_evidence(scored.reasons):
            result.reasons.append("not registered at the property address")
            return self._reject(result)
        if scored.score < self.threshold:
            result.reasons.append(f"below threshold {scored.score} < {self.threshold}")
            return self._reject(result)
        return result

    def _reject(self, result: MatchResult) -> None:
        self.rejections.append(result)
        logger.warning(
            f"CVR candidate '{result.candidate.name}' ({result.candidate.cvr}) discarded: "
            f"{'; '.join(result.reasons)}"
        )
        return None
