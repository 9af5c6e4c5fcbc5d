"""Web scraper built on httpx and BeautifulSoup."""

import logging

import httpx
from bs4 import BeautifulSoup

from cadence.services.actions import ScrapeResult

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 10_000


class HttpWebScraper:
    """Fetches a page and returns CSS-selected items or the raw (capped) HTML."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 20,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout

    async def _fetch(self, url: str) -> str:
        if self._http_client is not None:
            response = await self._http_client.get(url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(url)
        response.raise_for_status()
        return response.text

    async def scrape(self, url: str, selector: str | None = None) -> ScrapeResult:
        html = await self._fetch(url)
        if not selector:
            return ScrapeResult(content=html[:MAX_CONTENT_CHARS])

        soup = BeautifulSoup(html, "html.parser")
        items = [el.get_text(separator=" ", strip=True) for el in soup.select(selector)]
        logger.debug(f"Selector {selector!r} matched {len(items)} elements on {url}")
        return ScrapeResult(items=items)
