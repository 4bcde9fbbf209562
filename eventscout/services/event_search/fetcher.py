"""Page fetchers for event extraction.

``Crawl4AIFetcher`` renders pages in a headless browser and returns markdown,
which keeps speaker grids built by JavaScript. ``HttpxFetcher`` is the plain
HTTP alternative used when no browser is available.
"""

import asyncio
import html as html_lib
import logging
import re
from typing import Protocol

import httpx
from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

from eventscout.core.constants import MAX_PAGE_CHARS
from eventscout.core.exceptions import FetchError
from eventscout.core.stdout_utils import stdout_to_stderr
from eventscout.services.event_models import FetchedPage
from eventscout.utils.url import extract_links, to_absolute_url

logger = logging.getLogger(__name__)

_DROP_BLOCKS = re.compile(r"<(script|style|noscript|svg)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_TAGS = re.compile(r"</?(p|div|section|article|li|ul|ol|h[1-6]|br|tr|td|header|footer)[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def html_to_text(raw_html: str) -> str:
    """Reduce HTML to readable text with one block per line."""
    text = _DROP_BLOCKS.sub(" ", raw_html or "")
    text = _BLOCK_TAGS.sub("\n", text)
    text = _ANY_TAG.sub(" ", text)
    text = html_lib.unescape(text)
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def html_title(raw_html: str) -> str:
    """Content of the ``<title>`` element, if any."""
    match = _TITLE.search(raw_html or "")
    return " ".join(html_lib.unescape(match.group(1)).split()) if match else ""


class ContentFetcher(Protocol):
    """Fetches one page and returns its text and links."""

    async def fetch(self, url: str, timeout: float) -> FetchedPage:
        """Fetch a page.

        Raises:
            FetchError: If the page could not be fetched
        """
        ...


class Crawl4AIFetcher:
    """Headless-browser fetcher built on crawl4ai."""

    def __init__(self, browser_config: BrowserConfig) -> None:
        """Initialize with the browser configuration shared by the process.

        Args:
            browser_config: crawl4ai browser configuration
        """
        self.browser_config = browser_config

    async def fetch(self, url: str, timeout: float) -> FetchedPage:
        """Render a page and return markdown, HTML and links.

        Args:
            url: Page URL
            timeout: Seconds before the fetch is abandoned

        Returns:
            Fetched page

        Raises:
            FetchError: On browser errors, timeouts or unsuccessful crawls
        """
        run_config = CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            page_timeout=int(timeout * 1000),
        )
        try:
            # Crawler per call; the context manager closes the browser
            async with AsyncWebCrawler(config=self.browser_config) as crawler:
                with stdout_to_stderr():
                    result = await asyncio.wait_for(
                        crawler.arun(url=url, config=run_config),
                        timeout=timeout + 2,
                    )
        except TimeoutError as e:
            raise FetchError(url, f"Timed out fetching {url} after {timeout}s") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Browser fetch of %s failed: %s: %s", url, type(e).__name__, e)
            raise FetchError(url, f"Browser fetch failed: {e}") from e

        if not result.success:
            raise FetchError(url, f"Failed to crawl {url}: {result.error_message}")

        links = []
        for bucket in ("internal", "external"):
            for link in (result.links or {}).get(bucket, []):
                absolute = to_absolute_url(link.get("href"), url)
                if absolute:
                    links.append(absolute)
        if not links and result.html:
            links = extract_links(result.html, url)

        content = str(result.markdown or "") or html_to_text(result.html or "")
        return FetchedPage(
            url=url,
            content=content[:MAX_PAGE_CHARS],
            html=result.html or "",
            links=links,
            status_code=result.status_code,
        )


class HttpxFetcher:
    """Plain HTTP fetcher."""

    def __init__(self, client: httpx.AsyncClient, user_agent: str = "EventScout-MCP-Server/1.0") -> None:
        self.client = client
        self.user_agent = user_agent

    async def fetch(self, url: str, timeout: float) -> FetchedPage:
        """Download a page and convert it to text.

        Raises:
            FetchError: On transport errors, timeouts or HTTP error statuses
        """
        try:
            response = await self.client.get(
                url,
                headers={"User-Agent": self.user_agent, "Accept": "text/html"},
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as e:
            raise FetchError(url, f"Timed out fetching {url} after {timeout}s") from e
        except httpx.RequestError as e:
            raise FetchError(url, f"Request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise FetchError(url, f"HTTP {response.status_code} fetching {url}")

        raw_html = response.text
        final_url = str(response.url)
        title = html_title(raw_html)
        text = html_to_text(raw_html)
        content = f"# {title}\n{text}" if title else text
        return FetchedPage(
            url=final_url,
            content=content[:MAX_PAGE_CHARS],
            html=raw_html,
            links=extract_links(raw_html, final_url),
            status_code=response.status_code,
        )
