"""Email hunt for a named contact that has no usable e-mail.

Strategies, in order:
  1. Company domain from known e-mails or the company website
  2. Targeted web searches for the person (snippets, plus contact pages)
  3. Contact pages on the company domain

Name-pattern guesses (firstname.lastname@domain, ...) are never evidence.
They only raise the confidence of an address that was actually seen on a
page or in a search result. Addresses on domains without MX records are
dropped.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, List, Sequence
from urllib.parse import urlparse

from loguru import logger

from services.ownership.evidence import emails_in_text, is_junk_email
from services.ownership.interfaces import IMailDomainCheck, IWebEvidence
from services.ownership.models import SearchResult

FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "icloud.com", "me.com", "mail.com", "protonmail.com", "proton.me",
    "hotmail.dk", "outlook.dk", "yahoo.dk", "jubii.dk",
})

INVALID_DOMAIN_VALUES = frozenset({
    "ukendt", "unknown", "null", "undefined", "ingen", "none", "n/a", "na",
    "mangler", "ikke fundet",
})

GENERIC_LOCAL_PARTS = frozenset({
    "info", "kontakt", "contact", "mail", "post", "kontor", "office", "hello",
    "hej", "reception", "support", "salg", "sales", "admin", "regnskab", "booking",
})

CONTACT_PAGE_HINT = re.compile(r"kontakt|contact|team|bestyrelse|board|ledelse|about|om[- ]os", re.I)
CONTACT_PATHS = ("", "/kontakt", "/om-os", "/bestyrelse")

_FOLD = str.maketrans({"æ": "ae", "ø": "oe", "å": "aa", "ü": "u", "ä": "a", "ö": "o"})


def normalize_for_email(text: str) -> str:
    return re.sub(r"[^a-z0-9.\-]", "", (text or "").lower().translate(_FOLD)).strip()


def is_valid_domain(domain: Optional[str]) -> bool:
    if not domain:
        return False
    d = domain.strip().lower()
    if d in INVALID_DOMAIN_VALUES or len(d) < 4 or "." not in d or re.search(r"\s", d):
        return False
    return bool(re.search(r"\.[a-z]{2,10}$", d))


def is_generic_email(email: str) -> bool:
    return email.split("@")[0].lower() in GENERIC_LOCAL_PARTS


def generate_email_patterns(full_name: str, domain: str) -> List[str]:
    """Likely addresses for a person at a domain. Guesses, not evidence."""
    parts = (full_name or "").split()
    if len(parts) < 2 or not is_valid_domain(domain):
        return []
    first, last = normalize_for_email(parts[0]), normalize_for_email(parts[-1])
    if not first or not last:
        return []

    locals_ = [
        first,
        f"{first}.{last}",
        f"{first[0]}.{last}",
        f"{first[0]}{last}",
        f"{first}{last[0]}",
        last,
        f"{first}-{last}",
        f"{first}{last}",
    ]
    if len(parts) >= 3:
        middle = normalize_for_email(parts[1])
        if middle:
            locals_.append(f"{first}.{middle}.{last}")
            locals_.append(f"{first}{middle[0]}{last}")

    domain = domain.strip().lower()
    return list(dict.fromkeys(f"{local}@{domain}" for local in locals_))


def email_matches_name(email: str, full_name: str) -> bool:
    """True when the local part looks derived from the person's name."""
    local = (email or "").split("@")[0].lower()
    parts = (full_name or "").lower().split()
    if len(parts) < 2 or not local:
        return False
    first, last = normalize_for_email(parts[0]), normalize_for_email(parts[-1])
    if not first or not last:
        return False
    return (
        first in local
        or last in local
        or local in (f"{first[0]}.{last}", f"{first[0]}{last}", f"{first}{last[0]}")
    )


def domain_of(url_or_email: Optional[str]) -> Optional[str]:
    if not url_or_email:
        return None
    if "@" in url_or_email and "/" not in url_or_email:
        return url_or_email.split("@")[-1].lower()
    url = url_or_email if url_or_email.startswith(("http://", "https://")) else f"https://{url_or_email}"
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host or None


def extract_company_domain(
    known_emails: Sequence[str],
    website_url: Optional[str] = None,
) -> Optional[str]:
    """Most common non-free domain among known e-mails, else the website host."""
    counts: dict = {}
    for email in known_emails:
        if is_junk_email(email):
            continue
        domain = domain_of(email)
        if domain and domain not in FREE_EMAIL_DOMAINS:
            counts[domain] = counts.get(domain, 0) + 1
    if counts:
        return max(counts.items(), key=lambda kv: kv[1])[0]
    host = domain_of(website_url)
    if host and host not in FREE_EMAIL_DOMAINS and is_valid_domain(host):
        return host
    return None


def build_search_queries(person: str, company: Optional[str], domain: Optional[str]) -> List[str]:
    queries = [f'"{person}" email']
    if company:
        queries.append(f'"{person}" "{company}" email kontakt')
    if domain:
        queries.append(f'"{person}" "@{domain}"')
        queries.append(f'site:{domain} "{person}"')
    if company:
        queries.append(f'"{company}" bestyrelse kontakt email')
    return queries


@dataclass
class EmailCandidate:
    email: str
    source: str
    confidence: float


@dataclass
class HuntResult:
    email: Optional[str]
    source: str = "none"
    confidence: float = 0.0
    candidates: List[EmailCandidate] = field(default_factory=list)
    domain: Optional[str] = None


class EmailHunter:
    """Finds an e-mail for a person among addresses actually published on the web."""

    def __init__(
        self,
        web: IWebEvidence,
        mail_check: Optional[IMailDomainCheck] = None,
        max_queries: int = 4,
        max_pages: int = 3,
    ):
        self.web = web
        self.mail_check = mail_check
        self.max_queries = max_queries
        self.max_pages = max_pages

    async def find_email(
        self,
        person_name: str,
        company_name: Optional[str] = None,
        domain: Optional[str] = None,
        known_emails: Sequence[str] = (),
        website_url: Optional[str] = None,
    ) -> HuntResult:
        domain = domain if is_valid_domain(domain) else extract_company_domain(known_emails, website_url)
        guesses = set(generate_email_patterns(person_name, domain)) if domain else set()
        candidates: List[EmailCandidate] = []
        scraped: List[str] = []

        for query in build_search_queries(person_name, company_name, domain)[: self.max_queries]:
            results = await self.web.search(query, 5)
            for result in results:
                for email in emails_in_text(f"{result.title} {result.snippet}"):
                    candidates.append(EmailCandidate(
                        email=email.lower(),
                        source=f"web search: {result.url}",
                        confidence=0.5 if is_generic_email(email) else 0.7,
                    ))
                if len(scraped) < self.max_pages and self._looks_like_contact_page(result):
                    scraped.append(result.url)
                    candidates.extend(await self._scrape(result.url, person_name, 0.75))

        if domain and domain not in FREE_EMAIL_DOMAINS:
            for path in CONTACT_PATHS:
                url = f"https://www.{domain}{path}"
                if url in scraped:
                    continue
                scraped.append(url)
                candidates.extend(await self._scrape(url, person_name, 0.65))

        ranked = await self._rank(candidates, person_name, domain, guesses)
        if not ranked:
            logger.info(f"Email hunt: nothing found for '{person_name}' (domain: {domain or 'none'})")
            return HuntResult(email=None, domain=domain)

        best = ranked[0]
        logger.info(
            f"Email hunt: {best.email} for '{person_name}' ({round(best.confidence * 100)}%, "
            f"{len(ranked)} candidates)"
        )
        return HuntResult(
            email=best.email, source=best.source, confidence=best.confidence,
            candidates=ranked, domain=domain,
        )

    @staticmethod
    def _looks_like_contact_page(result: SearchResult) -> bool:
        return bool(CONTACT_PAGE_HINT.search(result.title) or CONTACT_PAGE_HINT.search(result.url))

    async def _scrape(self, url: str, person_name: str, base: float) -> List[EmailCandidate]:
        page = await self.web.scrape(url)
        if not page:
            return []
        found = []
        for email in page.emails:
            if is_junk_email(email):
                continue
            if email_matches_name(email, person_name):
                confidence = 0.9
            elif is_generic_email(email):
                confidence = 0.5
            else:
                confidence = base
            found.append(EmailCandidate(email=email.lower(), source=f"website {url}", confidence=confidence))
        return found

    async def _rank(
        self,
        candidates: List[EmailCandidate],
        person_name: str,
        domain: Optional[str],
        guesses: set,
    ) -> List[EmailCandidate]:
        best: dict = {}
        for c in candidates:
            if c.email not in best or c.confidence > best[c.email].confidence:
                best[c.email] = c

        ranked: List[EmailCandidate] = []
        for c in best.values():
            mail_domain = domain_of(c.email)
            if self.mail_check and mail_domain and not await self.mail_check.has_mx(mail_domain):
                logger.info(f"Email hunt: dropped {c.email}, {mail_domain} has no MX records")
                continue
            if c.email in guesses or email_matches_name(c.email, person_name):
                c.confidence = min(c.confidence + 0.15, 1.0)
            if domain and c.email.endswith(f"@{domain}"):
                c.confidence = min(c.confidence + 0.1, 1.0)
            ranked.append(c)
        ranked.sort(key=lambda c: c.confidence, reverse=True)
        return ranked
