"""Web evidence service: Serper search + page scraping behind one interface."""

from typing import Optional, List

from services.ownership.models import ScrapedPage, SearchResult
from lib.web.scraper import PageScraper
from lib.web.serper import SerperSearch


class WebEvidence:
    """Implements IWebEvidence."""

    def __init__(self, search: SerperSearch, scraper: PageScraper):
        self._search = search
        self._scraper = scraper

    async def search(self, query: str, num: int = 5) -> List[SearchResult]:
        return await self._search.search(query, num)

    async def scrape(self, url: str) -> Optional[ScrapedPage]:
        return await self._scraper.scrape(url)
