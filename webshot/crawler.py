"""Crawl discovery engine.

Breadth-first discovery of same-origin links starting from a base URL,
bounded by a page budget and an approximate depth bound on how many pages
get visited.
"""

import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .capture.browser_factory import BrowserFactory, PageConfig
from .config import CrawlSettings
from .errors import CrawlFetchFailure, EngineLaunchError

logger = logging.getLogger(__name__)


EXTRACT_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]'))
    .map(a => a.href)
    .filter(href => href && !href.startsWith('mailto:') && !href.startsWith('tel:'))
"""

DEFAULT_PORTS = {'http': 80, 'https': 443}


def origin_of(url: str) -> Optional[Tuple[str, str, int]]:
    """Scheme, host and effective port of an absolute http(s) URL."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parts.hostname:
        return None
    return scheme, parts.hostname.lower(), port or DEFAULT_PORTS[scheme]


class CrawlConfig:
    """Configuration for crawl discovery."""

    def __init__(
        self,
        timeout_ms: int = 30000,
        max_depth: int = 2,
        max_pages: int = 50,
        user_agent: Optional[str] = None,
    ):
        """Initialize crawl configuration.

        Args:
            timeout_ms: Navigation timeout for each visited page
            max_depth: Default depth bound; visiting stops queueing once
                ``max_depth * 10`` pages have been visited
            max_pages: Default cap on discovered URLs
            user_agent: User-Agent for discovery pages
        """
        self.timeout_ms = timeout_ms
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.user_agent = user_agent

    @classmethod
    def from_settings(cls, settings: CrawlSettings, user_agent: Optional[str] = None) -> "CrawlConfig":
        return cls(
            timeout_ms=settings.timeout_ms,
            max_depth=settings.max_depth,
            max_pages=settings.max_pages,
            user_agent=user_agent,
        )


class Crawler:
    """Discovers same-origin URLs by visiting pages breadth-first."""

    def __init__(self, browser_factory: BrowserFactory, config: Optional[CrawlConfig] = None):
        self.browser_factory = browser_factory
        self.config = config or CrawlConfig()
        self._stats = {
            "pages_visited": 0,
            "pages_failed": 0,
            "links_seen": 0,
        }

    async def discover(
        self,
        base_url: str,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> List[str]:
        """Discover URLs reachable from ``base_url`` on the same origin.

        Args:
            base_url: Starting URL, always part of the result
            max_depth: Depth bound (approximated as a visit budget of
                ``max_depth * 10``)
            max_pages: Maximum number of URLs returned

        Returns:
            Discovered URLs in discovery order, base URL first
        """
        max_depth = max_depth or self.config.max_depth
        max_pages = max_pages or self.config.max_pages
        base_origin = origin_of(base_url)

        found: Dict[str, None] = {base_url: None}
        visited: Set[str] = set()
        queue: Deque[str] = deque([base_url])

        logger.info(f"Starting crawl of {base_url} (max_depth={max_depth}, max_pages={max_pages})")

        while queue and len(found) < max_pages:
            url = queue.popleft()
            if url in visited:
                continue
            visited.add(url)

            try:
                links = await self.fetch_links(url)
            except CrawlFetchFailure as e:
                logger.warning(str(e))
                self._stats["pages_failed"] += 1
                continue

            self._stats["pages_visited"] += 1
            self._stats["links_seen"] += len(links)

            for link in links:
                if len(found) >= max_pages:
                    break
                if link in found or origin_of(link) != base_origin:
                    continue

                found[link] = None
                if len(visited) < max_depth * 10:
                    queue.append(link)

        logger.info(f"Crawl of {base_url} found {len(found)} URLs after visiting {len(visited)} pages")
        return list(found)

    async def fetch_links(self, url: str) -> List[str]:
        """Load ``url`` and return the absolute hrefs of its anchors.

        Raises:
            CrawlFetchFailure: If the page cannot be loaded or read
        """
        try:
            async with self.browser_factory.page(PageConfig(user_agent=self.config.user_agent)) as page:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.config.timeout_ms)
                links = await page.evaluate(EXTRACT_LINKS_JS)
        except EngineLaunchError:
            raise
        except PlaywrightTimeoutError as e:
            raise CrawlFetchFailure(url, f"timed out after {self.config.timeout_ms}ms") from e
        except Exception as e:
            raise CrawlFetchFailure(url, str(e) or e.__class__.__name__) from e

        return [link for link in links or [] if isinstance(link, str)]

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
