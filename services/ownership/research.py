"""Research for one property: registries first, then the web.

Steps:
  [1/4 OWNERSHIP] Ownership registry (address → BFE → owners/administrators)
  [2/4 CLASSIFY]  Deterministic ownership type + registry strategy
  [3/4 CVR]       Registry match, in priority order:
                    1. primary owner (strict name match)
                    2. primary administrator (strict name match)
                    3. registry number already on the property
                    4. company name already on the property
                    5. association registered at the address itself
  [4/4 WEB]       Targeted searches and scraping of the most relevant pages

The evidence set and the ordered raw contacts are built from exactly what
these steps returned.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Optional, List

from loguru import logger

from services.ownership.classifier import classify_ownership, registry_strategy
from services.ownership.config import OwnershipConfig
from services.ownership.evidence import CollectedEvidence, collect_evidence
from services.ownership.interfaces import IOwnershipRegistry, IWebEvidence, ProgressSink, notify
from services.ownership.matcher import RegistryMatcher, street_of
from services.ownership.models import (
    MatchResult,
    OfficialOwnershipRecord,
    OwnershipType,
    ProgressEvent,
    PropertyRecord,
    RegistryStrategy,
    ScrapedPage,
    SearchResult,
)

# Registries and listing sites: never a company's own contact page
NON_COMPANY_DOMAINS = (
    "proff.dk", "cvr.dk", "virk.dk", "ois.dk", "boliga.dk", "dingeo.dk", "krak.dk",
    "facebook.com", "linkedin.com", "instagram.com", "youtube.com", "wikipedia.org",
    "boligportal.dk", "edc.dk", "home.dk", "google.",
)
REGISTRY_SITES = ("cvr.dk", "virk.dk", "ois.dk", "proff.dk", "boliga.dk", "dingeo.dk", "tinglysning")
CONTACT_HINT = re.compile(r"kontakt|contact|bestyrelse|board|ledelse|om[- ]os|about|team", re.I)


@dataclass
class ResearchResult:
    property: PropertyRecord
    ownership: Optional[OfficialOwnershipRecord] = None
    ownership_type: OwnershipType = OwnershipType.UNKNOWN
    strategy: Optional[RegistryStrategy] = None
    registry_match: Optional[MatchResult] = None
    rejected_matches: List[MatchResult] = field(default_factory=list)
    search_results: List[SearchResult] = field(default_factory=list)
    pages: List[ScrapedPage] = field(default_factory=list)
    collected: CollectedEvidence = field(default_factory=CollectedEvidence)

    @property
    def website_url(self) -> Optional[str]:
        return self.pages[0].url if self.pages else None

    def summary(self) -> str:
        return (
            f"ownership={'yes' if self.ownership else 'no'} type={self.ownership_type.value} "
            f"cvr={self.registry_match.candidate.cvr if self.registry_match else '-'} "
            f"results={len(self.search_results)} pages={len(self.pages)} "
            f"contacts={len(self.collected.contacts)}"
        )


def build_search_queries(
    property: PropertyRecord,
    owner_name: Optional[str],
    admin_name: Optional[str],
    registry_match: Optional[MatchResult],
    ownership_type: OwnershipType,
) -> List[str]:
    addr = property.address
    postal = f'"{property.postal_code}"' if property.postal_code else ""
    city = property.city or ""
    company = registry_match.candidate.name if registry_match else None

    queries: List[str] = []
    if owner_name and ownership_type != OwnershipType.PRIVATE_INDIVIDUAL:
        queries.append(f'"{owner_name}" kontakt email bestyrelse direktion')
    if admin_name and admin_name != owner_name:
        queries.append(f'"{admin_name}" kontakt email direktør')
    if company and company != owner_name:
        queries.append(f'"{company}" ejer direktion bestyrelse email')
    if ownership_type in (OwnershipType.HOUSING_COOPERATIVE, OwnershipType.OWNERS_ASSOCIATION):
        queries.append(f'"{addr}" ejerforening andelsforening bestyrelse')
    queries.append(" ".join(p for p in (f'"{addr}"', postal, city, "ejer") if p))
    queries.append(" ".join(p for p in (f'"{addr}"', city, "CVR registreret") if p))
    return list(dict.fromkeys(queries))


def _is_relevant(result: SearchResult, terms: List[str]) -> bool:
    text = f"{result.title} {result.snippet} {result.url}".lower()
    if any(site in text for site in REGISTRY_SITES):
        return True
    return any(t and t in text for t in terms)


def pick_urls(results: List[SearchResult], limit: int) -> List[str]:
    """Company pages first, contact-looking pages before others."""
    urls: List[str] = []
    ranked = sorted(
        results,
        key=lambda r: 0 if CONTACT_HINT.search(r.url) or CONTACT_HINT.search(r.title) else 1,
    )
    for result in ranked:
        url = result.url.lower()
        if any(d in url for d in NON_COMPANY_DOMAINS):
            continue
        if result.url not in urls:
            urls.append(result.url)
        if len(urls) >= limit:
            break
    return urls


class PropertyResearcher:
    def __init__(
        self,
        ownership_registry: IOwnershipRegistry,
        matcher: RegistryMatcher,
        web: Optional[IWebEvidence] = None,
        config: Optional[OwnershipConfig] = None,
    ):
        self.ownership_registry = ownership_registry
        self.matcher = matcher
        self.web = web
        self.config = config or OwnershipConfig()

    async def research(
        self,
        property: PropertyRecord,
        emit: Optional[ProgressSink] = None,
    ) -> ResearchResult:
        tag = property.tag

        def progress(message: str, detail: Optional[str] = None) -> None:
            notify(emit, ProgressEvent(
                phase="researching", message=message, detail=detail,
                property_id=property.property_id,
            ))

        result = ResearchResult(property=property)
        self.matcher.clear_rejections()

        # ── 1. Ownership registry ──
        t0 = time.monotonic()
        result.ownership = await self.ownership_registry.resolve_ownership(
            property.address, property.postal_code, property.city,
        )
        elapsed = time.monotonic() - t0
        if result.ownership:
            owners = ", ".join(result.ownership.owner_names) or "none"
            logger.info(f"{tag} [1/4 OWNERSHIP] BFE {result.ownership.bfe_number}: owners={owners} [{elapsed:.1f}s]")
            progress(f"Ownership record found (BFE {result.ownership.bfe_number})", f"Owners: {owners}")
        else:
            logger.info(f"{tag} [1/4 OWNERSHIP] No ownership record [{elapsed:.1f}s]")
            progress("No ownership record found")

        # ── 2. Classification ──
        ownership = result.ownership
        result.ownership_type = classify_ownership(
            ownership.ownership_code if ownership else None,
            ownership.ownership_text if ownership else None,
            ownership.owner_names if ownership else [],
        )
        result.strategy = registry_strategy(result.ownership_type)
        logger.info(
            f"{tag} [2/4 CLASSIFY] {result.ownership_type.value}: {result.strategy.reason}"
        )
        progress(f"Ownership type: {result.ownership_type.value}", result.strategy.reason)

        # ── 3. Registry match ──
        owner = ownership.primary_owner.name if ownership and ownership.primary_owner else None
        admin = ownership.primary_administrator.name if ownership and ownership.primary_administrator else None
        municipality = ownership.municipality if ownership else None
        t0 = time.monotonic()
        if result.strategy.should_search_registry:
            result.registry_match = await self._match_registry(
                property, owner, admin, municipality, result.ownership_type, result.strategy,
            )
        else:
            logger.info(f"{tag} [3/4 CVR] Skipped: {result.strategy.reason}")
        result.rejected_matches = list(self.matcher.rejections)
        elapsed = time.monotonic() - t0
        if result.registry_match:
            c = result.registry_match.candidate
            logger.info(f"{tag} [3/4 CVR] HIT: {c.name} ({c.cvr}) score={result.registry_match.score} [{elapsed:.1f}s]")
            progress(
                f"Registry match: {c.name} (CVR {c.cvr}), score {result.registry_match.score}",
                ", ".join(result.registry_match.reasons),
            )
        elif result.strategy.should_search_registry:
            logger.info(
                f"{tag} [3/4 CVR] No accepted match, {len(result.rejected_matches)} discarded [{elapsed:.1f}s]"
            )
            progress("No registry match", f"{len(result.rejected_matches)} candidates discarded")

        # ── 4. Web ──
        if self.web:
            await self._web_evidence(result, owner, admin)

        result.collected = collect_evidence(
            result.ownership, result.registry_match, result.pages, result.search_results,
        )
        logger.info(f"{tag} Research done: {result.summary()}")
        return result

    async def _match_registry(
        self,
        property: PropertyRecord,
        owner: Optional[str],
        admin: Optional[str],
        municipality: Optional[str],
        ownership_type: OwnershipType,
        strategy: RegistryStrategy,
    ) -> Optional[MatchResult]:
        attempts = 0

        def usable(name: Optional[str]) -> bool:
            if not name or attempts >= strategy.max_candidates:
                return False
            if not strategy.accept_private_owner and classify_ownership(None, None, [name]) == OwnershipType.PRIVATE_INDIVIDUAL:
                logger.debug(f"{property.tag} [3/4 CVR] '{name}' looks like a private person, not searched")
                return False
            return True

        for name in (owner, admin if admin != owner else None):
            if not usable(name):
                continue
            attempts += 1
            match = await self.matcher.match_by_name(
                name, property.address, property.postal_code, municipality,
                strict_name=True, require_address=strategy.require_address_match,
            )
            if match:
                return match

        if property.owner_company_cvr:
            match = await self.matcher.match_by_number(property.owner_company_cvr)
            if match:
                return match

        if property.owner_company_name and attempts < strategy.max_candidates:
            attempts += 1
            match = await self.matcher.match_by_name(
                property.owner_company_name, property.address, property.postal_code, municipality,
                require_address=strategy.require_address_match,
            )
            if match:
                return match

        if strategy.require_address_match or ownership_type == OwnershipType.UNKNOWN:
            return await self.matcher.match_by_address(property.address, property.postal_code, municipality)
        return None

    async def _web_evidence(
        self,
        result: ResearchResult,
        owner: Optional[str],
        admin: Optional[str],
    ) -> None:
        property = result.property
        tag = property.tag
        t0 = time.monotonic()

        queries = build_search_queries(property, owner, admin, result.registry_match, result.ownership_type)
        queries = queries[: self.config.max_search_queries]
        seen_urls: set = set()
        for query in queries:
            for hit in await self.web.search(query, 4):
                if hit.url not in seen_urls:
                    seen_urls.add(hit.url)
                    result.search_results.append(hit)

        terms = [street_of(property.address), property.postal_code or ""]
        for name in (owner, admin, result.registry_match.candidate.name if result.registry_match else None):
            if name:
                terms.append(name.lower()[:10])
        relevant = [r for r in result.search_results if _is_relevant(r, terms)]
        discarded = len(result.search_results) - len(relevant)
        result.search_results = relevant

        for url in pick_urls(relevant, self.config.max_scrape_urls):
            page = await self.web.scrape(url)
            if page:
                result.pages.append(page)

        elapsed = time.monotonic() - t0
        logger.info(
            f"{tag} [4/4 WEB] {len(queries)} queries, {len(relevant)} relevant results "
            f"({discarded} discarded), {len(result.pages)} pages scraped [{elapsed:.1f}s]"
        )
