import asyncio
import re
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import httpx

from app.features.audit.exceptions import AcquisitionError, InputError
from app.features.audit.schemas.audit import CapturedImage
from app.features.audit.services.acquisition.screenshot import (
    CRAWL_CAPTURE_POLICY,
    ScreenshotAcquirer,
)
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

# Absolute http(s) links and root-relative paths only
HREF_PATTERN = re.compile(r"""href=["']((?:https?://[^"']+|/[^"']*))["']""", re.IGNORECASE)

PRIORITY_KEYWORDS = ['pricing', 'about', 'features', 'contact', 'login', 'signup']

MAX_CRAWL_TARGETS = settings.CRAWL_MAX_PAGES


def _strip_slash(url: str) -> str:
    return url.rstrip("/")


def extract_links(html: str, seed_url: str) -> List[str]:
    """
    Same-host links found in the markup, resolved against the seed.

    The seed itself and anything carrying a fragment are dropped; duplicates
    collapse to their first occurrence.
    """
    seed_host = urlparse(seed_url).hostname
    seed_key = _strip_slash(seed_url)
    links = {}

    for match in HREF_PATTERN.finditer(html or ""):
        try:
            absolute_url = urljoin(seed_url, match.group(1).strip())
            host = urlparse(absolute_url).hostname
        except ValueError:
            continue

        if host != seed_host:
            continue
        if "#" in absolute_url:
            continue
        if _strip_slash(absolute_url) == seed_key:
            continue
        links.setdefault(absolute_url, None)

    return list(links)


def is_priority_link(url: str) -> bool:
    url_lower = url.lower()
    return any(keyword in url_lower for keyword in PRIORITY_KEYWORDS)


def rank_links(links: List[str]) -> List[str]:
    """Priority-keyword links first; otherwise discovery order is kept."""
    return sorted(links, key=lambda url: 0 if is_priority_link(url) else 1)


def select_targets(seed_url: str, links: List[str], max_targets: int = MAX_CRAWL_TARGETS) -> List[str]:
    """Seed first, then the best ranked links, never more than max_targets."""
    return [seed_url, *rank_links(links)[:max(max_targets - 1, 0)]]


class Crawler:
    """Discovers a handful of key pages of a site and screenshots them."""

    def __init__(
        self,
        acquirer: Optional[ScreenshotAcquirer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.acquirer = acquirer or ScreenshotAcquirer()
        self._client = client

    async def _fetch_html(self, url: str) -> str:
        headers = {"User-Agent": settings.CRAWLER_USER_AGENT}
        if self._client is not None:
            response = await self._client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(
                timeout=settings.CRAWLER_FETCH_TIMEOUT_SECONDS,
                follow_redirects=True,
            ) as client:
                response = await client.get(url, headers=headers)
        response.raise_for_status()
        return response.text

    async def discover(self, seed_url: str) -> List[str]:
        """
        Pick the pages to capture for a crawl: the seed plus up to two links.

        Discovery is best-effort and tried once.

        Raises:
            InputError: FETCH_FAILED when the seed page cannot be fetched
        """
        try:
            html = await self._fetch_html(seed_url)
        except httpx.HTTPError as e:
            logger.error(f"Crawl error fetching {seed_url}: {e}")
            raise InputError(
                f"Failed to access site URL: {e}",
                error_code="FETCH_FAILED",
                reason=str(e),
            ) from e

        links = extract_links(html, seed_url)
        targets = select_targets(seed_url, links)
        logger.info(f"Discovered {len(links)} internal links on {seed_url}; selected {targets}")
        return targets

    async def crawl(self, seed_url: str) -> List[CapturedImage]:
        """
        Capture all selected pages concurrently.

        Failed captures are dropped; surviving images keep target order.

        Raises:
            InputError: FETCH_FAILED
            AcquisitionError: CRAWL_FAILED when no page could be captured
        """
        targets = await self.discover(seed_url)
        results = await asyncio.gather(
            *(self.acquirer.capture(target, CRAWL_CAPTURE_POLICY) for target in targets)
        )
        images = [image for image in results if image is not None]

        if not images:
            raise AcquisitionError(
                "Failed to crawl site",
                error_code="CRAWL_FAILED",
                reason=f"No screenshots captured for {len(targets)} target(s)",
            )

        if len(images) < len(targets):
            logger.warning(f"Crawl of {seed_url}: captured {len(images)}/{len(targets)} pages")
        return images
