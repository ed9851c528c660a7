"""Page scraping for contact evidence.

Extracts from one page:
  1. mailto: links and e-mail addresses in the page text
  2. Danish phone numbers
  3. Person names from JSON-LD Person entities and "Name, Title" patterns
  4. Short text snippets around contact/board/management sections

Only what is literally on the page is returned. Nothing is inferred.
"""

import json
import re
from typing import Optional, List
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from services.ownership.evidence import emails_in_text, is_junk_email
from services.ownership.models import ScrapedPage
from services.ownership.retry import RetryPolicy

MAX_TEXT_LENGTH = 5000

# +45 12 34 56 78 / 12345678 / 12.34.56.78
PHONE_REGEX = re.compile(r"(?:\+45[\s-]?)?(?:\d{2}[\s.-]?\d{2}[\s.-]?\d{2}[\s.-]?\d{2})")

# Never the property's own site
SKIP_DOMAINS = frozenset({
    "facebook.com", "instagram.com", "twitter.com", "x.com",
    "linkedin.com", "youtube.com", "tiktok.com", "pinterest.com",
    "boligportal.dk", "edc.dk", "home.dk", "boliga.dk", "dingeo.dk",
})

CONTACT_TITLES = [
    "administrerende direktør", "direktør", "adm. direktør",
    "bestyrelsesformand", "formand", "næstformand", "kasserer",
    "ejendomsadministrator", "administrator", "forvalter", "ejendomschef",
    "indehaver", "ejer", "partner", "kontaktperson",
]

_NAME = r"([A-ZÆØÅ][a-zæøå]+(?:[\s-][A-ZÆØÅ][a-zæøå]+){1,3})"
_TITLES = "|".join(re.escape(t) for t in CONTACT_TITLES)
NAME_TITLE_PATTERNS = [
    re.compile(rf"{_NAME}\s*[,\-–]\s*((?i:{_TITLES}))"),
    re.compile(rf"((?i:{_TITLES}))\s*[:\-–]\s*{_NAME}"),
]

CONTACT_SECTION_WORDS = (
    "kontakt", "contact", "bestyrelse", "direktion", "ledelse",
    "medarbejder", "team", "administrator",
)


def extract_domain(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    host = urlparse(url).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host.lower() or None


def extract_emails(text: str) -> List[str]:
    """Unique, lower-cased, non-junk e-mail addresses in order of appearance."""
    return [email.lower() for email in emails_in_text(text)]


def extract_phones(text: str, limit: int = 8) -> List[str]:
    phones: List[str] = []
    for match in PHONE_REGEX.findall(text or ""):
        digits = re.sub(r"\D", "", match)
        if len(digits) >= 8 and match.strip() not in phones:
            phones.append(match.strip())
    return phones[:limit]


def _persons_from_jsonld(data, names: List[str]) -> None:
    if isinstance(data, list):
        for item in data:
            _persons_from_jsonld(item, names)
        return
    if not isinstance(data, dict):
        return
    types = data.get("@type", "")
    types = types if isinstance(types, list) else [types]
    if "Person" in types and isinstance(data.get("name"), str):
        names.append(data["name"].strip())
    for key in ("employee", "employees", "member", "members", "founder", "@graph"):
        if key in data:
            _persons_from_jsonld(data[key], names)


def extract_names(soup: BeautifulSoup, text: str) -> List[str]:
    names: List[str] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            _persons_from_jsonld(json.loads(script.string or ""), names)
        except (json.JSONDecodeError, TypeError):
            continue
    for pattern in NAME_TITLE_PATTERNS:
        for match in pattern.finditer(text):
            g0, g1 = match.groups()
            name = g1 if g0.lower() in CONTACT_TITLES else g0
            names.append(name.strip())
    unique: List[str] = []
    for name in names:
        if 5 < len(name) < 50 and name not in unique:
            unique.append(name)
    return unique


def parse_page(url: str, html: str) -> ScrapedPage:
    soup = BeautifulSoup(html, "html.parser")

    mailto: List[str] = []
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if href.lower().startswith("mailto:"):
            email = href[7:].split("?")[0].strip().lower()
            if "@" in email and not is_junk_email(email):
                mailto.append(email)

    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(["script", "style", "noscript", "svg", "iframe"]):
        tag.decompose()
    text = re.sub(r"\s+", " ", soup.get_text(" ")).strip()

    emails = list(dict.fromkeys(mailto + extract_emails(text)))

    snippets: List[str] = []
    for element in soup.find_all(["section", "div", "p", "li", "address"]):
        chunk = re.sub(r"\s+", " ", element.get_text(" ")).strip()
        if 30 < len(chunk) < 1500 and any(w in chunk.lower() for w in CONTACT_SECTION_WORDS):
            chunk = chunk[:600]
            if chunk not in snippets:
                snippets.append(chunk)
        if len(snippets) >= 10:
            break

    return ScrapedPage(
        url=url,
        title=title,
        emails=emails,
        phones=extract_phones(text),
        names=extract_names(BeautifulSoup(html, "html.parser"), text[:MAX_TEXT_LENGTH]),
        text_snippets=snippets,
    )


class PageScraper:
    def __init__(self, client: httpx.AsyncClient, retry: Optional[RetryPolicy] = None):
        self.client = client
        self.retry = retry or RetryPolicy(max_attempts=2)

    async def fetch(self, url: str) -> Optional[str]:
        headers = {
            "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                          "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "da-DK,da;q=0.9,en;q=0.5",
        }
        try:
            resp = await self.retry.get(
                self.client, url, headers=headers, timeout=12.0, follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Scrape {url} failed: {e}")
            return None
        if resp.status_code != 200 or "html" not in resp.headers.get("content-type", "html"):
            return None
        return resp.text

    async def scrape(self, url: str) -> Optional[ScrapedPage]:
        domain = extract_domain(url)
        if domain and any(domain == d or domain.endswith("." + d) for d in SKIP_DOMAINS):
            logger.debug(f"Scrape {url}: skipped domain")
            return None
        html = await self.fetch(url)
        if not html:
            return None
        page = parse_page(url, html)
        logger.debug(
            f"Scrape {domain}: {len(page.emails)} emails, {len(page.names)} names, "
            f"{len(page.text_snippets)} snippets"
        )
        return page
