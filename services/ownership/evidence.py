"""Evidence collection for one property.

The EvidenceSet is the only authority on which e-mails and names exist.
Everything a model later says about contacts is checked against it.

Raw contacts are collected in a fixed order so that contact indices are
stable for a given set of findings:
  1. Ownership-registry owners
  2. Ownership-registry administrators
  3. Business-registry e-mail (with the first registry owner as name)
  4. Business-registry owners not already listed
  5. Website e-mails not already listed
  6. E-mails stated in search result titles/snippets
"""

import re
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Mapping, Sequence

from services.ownership.models import (
    MatchResult,
    OfficialOwnershipRecord,
    RawContact,
    ScrapedPage,
    SearchResult,
)

EMAIL_REGEX = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")
MAX_SNIPPET_RESULTS = 8

JUNK_EMAIL_MARKERS = (
    "example.com", "sentry", "wixpress", "webpack", "cloudflare", "squarespace",
    "w3.org", "schema.org", "noreply", "no-reply", "donotreply",
    "abuse@", "postmaster@", "mailer-daemon", "unsubscribe", "privacy@",
)
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def is_junk_email(email: str) -> bool:
    lower = email.lower()
    if any(marker in lower for marker in JUNK_EMAIL_MARKERS):
        return True
    return lower.endswith(IMAGE_SUFFIXES) or not (5 < len(lower) < 60)


def emails_in_text(text: str) -> List[str]:
    """Unique, non-junk e-mail addresses in order of appearance. Case is kept."""
    found: List[str] = []
    for match in EMAIL_REGEX.findall(text or ""):
        email = match.strip(".")
        if is_junk_email(email) or email.lower() in (e.lower() for e in found):
            continue
        found.append(email)
    return found


def names_overlap(a: str, b: str, prefix_length: int = 6) -> bool:
    """Loose name match: either name contains the other's leading characters."""
    a, b = (a or "").strip().lower(), (b or "").strip().lower()
    if not a or not b:
        return False
    return b[:prefix_length] in a or a[:prefix_length] in b


class EvidenceSet:
    """E-mails and names actually observed during one run, each tagged with its source.

    Grows only. Keys are lower-cased; the first source seen wins.
    """

    def __init__(self):
        self._emails: Dict[str, str] = {}
        self._names: Dict[str, str] = {}

    def add_email(self, email: Optional[str], source: str) -> bool:
        key = (email or "").strip().lower()
        if not key or "@" not in key or key in self._emails:
            return False
        self._emails[key] = source
        return True

    def add_name(self, name: Optional[str], source: str) -> bool:
        key = (name or "").strip().lower()
        if not key or key in self._names:
            return False
        self._names[key] = source
        return True

    def has_email(self, email: Optional[str]) -> bool:
        return (email or "").strip().lower() in self._emails

    def has_name(self, name: Optional[str], prefix_length: int = 6) -> bool:
        key = (name or "").strip().lower()
        if not key:
            return False
        if key in self._names:
            return True
        return any(names_overlap(key, known, prefix_length) for known in self._names)

    def email_source(self, email: Optional[str]) -> Optional[str]:
        return self._emails.get((email or "").strip().lower())

    @property
    def allowed_emails(self) -> Mapping[str, str]:
        return MappingProxyType(self._emails)

    @property
    def allowed_names(self) -> Mapping[str, str]:
        return MappingProxyType(self._names)

    def __len__(self) -> int:
        return len(self._emails) + len(self._names)


class CollectedEvidence:
    """EvidenceSet plus the ordered raw contacts derived from the same findings."""

    def __init__(self):
        self.evidence = EvidenceSet()
        self.contacts: List[RawContact] = []

    def _has_contact_name(self, name: str) -> bool:
        lower = name.strip().lower()
        return any(c.name and c.name.strip().lower() == lower for c in self.contacts)

    def _has_contact_email(self, email: str) -> bool:
        lower = email.strip().lower()
        return any(c.email and c.email.strip().lower() == lower for c in self.contacts)

    def indexed(self) -> List[Dict[str, Any]]:
        """The contact list as shown to the ranking model: index + observed fields only."""
        return [
            {
                "index": i,
                "name": c.name,
                "email": c.email,
                "phone": c.phone,
                "source": c.source,
                "role_hint": c.role or "other",
            }
            for i, c in enumerate(self.contacts)
        ]


def collect_evidence(
    ownership: Optional[OfficialOwnershipRecord],
    registry_match: Optional[MatchResult],
    pages: Sequence[ScrapedPage] = (),
    search_results: Sequence[SearchResult] = (),
) -> CollectedEvidence:
    collected = CollectedEvidence()
    evidence = collected.evidence

    if ownership:
        source = f"ownership registry (BFE {ownership.bfe_number})"
        for owner in ownership.owners:
            evidence.add_name(owner.name, f"{source}, owner")
            collected.contacts.append(
                RawContact(name=owner.name, role="owner", source=f"{source}, owner")
            )
        for admin in ownership.administrators:
            evidence.add_name(admin.name, f"{source}, administrator")
            collected.contacts.append(
                RawContact(name=admin.name, role="administrator", source=f"{source}, administrator")
            )

    if registry_match:
        company = registry_match.candidate
        source = f"CVR {company.cvr} ({company.name})"
        for owner in company.owners:
            evidence.add_name(owner, f"{source}, owner")
        if company.email:
            evidence.add_email(company.email, source)
            collected.contacts.append(RawContact(
                name=company.owners[0] if company.owners else None,
                email=company.email,
                phone=company.phone,
                role="owner",
                source=source,
            ))
        for owner in company.owners:
            if not collected._has_contact_name(owner):
                collected.contacts.append(
                    RawContact(name=owner, role="owner", source=f"{source}, owner")
                )

    for page in pages:
        source = f"website {page.url}"
        for name in page.names:
            evidence.add_name(name, source)
        for email in page.emails:
            evidence.add_email(email, source)
            if not collected._has_contact_email(email):
                collected.contacts.append(RawContact(email=email, role="other", source=source))

    for result in list(search_results)[:MAX_SNIPPET_RESULTS]:
        source = f"web search {result.url}"
        for email in emails_in_text(f"{result.title} {result.snippet}"):
            evidence.add_email(email, source)
            if not collected._has_contact_email(email):
                collected.contacts.append(RawContact(email=email, role="other", source=source))

    return collected
