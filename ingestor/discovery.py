from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import urljoin

from loguru import logger
from lxml import etree

from ingestor.errors import CrawlError, InvalidUrl
from ingestor.monitoring.metrics import LINKS_ENQUEUED
from ingestor.parsing.feeds import iter_sitemap_locs, parse_feed_links
from ingestor.storage.crawl_queue import DISCOVERED_VIA_RSS, DISCOVERED_VIA_SITEMAP
from ingestor.utils.url_utils import ensure_crawlable_url, join_origin


FEED_CANDIDATE_PATHS = ("", "/feed/", "/rss.xml", "/atom.xml")
SITEMAP_PATH = "/sitemap.xml"


class Discovery:
    """Best-effort URL discovery from RSS/Atom feeds and sitemaps.

    Nothing here raises to the caller: a failed fetch or an unparsable
    document simply discovers nothing.
    """

    def __init__(self, fetcher, robots, queue, priority: int = 10):
        self.fetcher = fetcher
        self.robots = robots
        self.queue = queue
        self.priority = priority

    # -------------------------------------------------------
    async def discover_feeds(self, origin: str) -> int:
        try:
            origin = ensure_crawlable_url(origin)
        except InvalidUrl as exc:
            logger.warning(f"Feed discovery skipped: {exc}")
            return 0

        for path in FEED_CANDIDATE_PATHS:
            candidate = join_origin(origin, path) if path else origin
            body = await self._fetch_document(candidate)
            if body is None:
                continue

            try:
                links = parse_feed_links(body)
            except Exception as exc:
                logger.warning(f"Could not parse {candidate} as a feed: {exc!r}")
                continue
            if links is None:
                continue

            count = await self._enqueue_all((urljoin(candidate, link) for link in links), DISCOVERED_VIA_RSS)
            logger.info(f"Feed {candidate}: {len(links)} entries, {count} new URLs")
            return count

        logger.info(f"No feed found for {origin}")
        return 0

    # -------------------------------------------------------
    async def discover_sitemap(self, origin: str) -> int:
        try:
            sitemap_url = join_origin(ensure_crawlable_url(origin), SITEMAP_PATH)
        except InvalidUrl as exc:
            logger.warning(f"Sitemap discovery skipped: {exc}")
            return 0

        body = await self._fetch_document(sitemap_url)
        if body is None:
            return 0

        count = 0
        try:
            for loc in iter_sitemap_locs(body):
                if await self._enqueue(loc, DISCOVERED_VIA_SITEMAP):
                    count += 1
        except etree.XMLSyntaxError as exc:
            logger.warning(f"Sitemap {sitemap_url} is not well-formed: {exc}")

        logger.info(f"Sitemap {sitemap_url}: {count} new URLs")
        return count

    # -------------------------------------------------------
    async def _fetch_document(self, url: str) -> Optional[bytes]:
        if not await self.robots.allowed(self.fetcher.http, url):
            logger.info(f"Discovery candidate disallowed by robots.txt: {url}")
            return None

        try:
            result = await self.fetcher.fetch(url)
        except CrawlError as exc:
            logger.info(f"Discovery candidate failed: {exc}")
            return None

        if not result.is_success or not result.body:
            logger.debug(f"Discovery candidate {url} returned {result.status_code}")
            return None
        return result.body

    async def _enqueue_all(self, urls: Iterable[str], discovered_via: str) -> int:
        count = 0
        for url in urls:
            if await self._enqueue(url, discovered_via):
                count += 1
        return count

    async def _enqueue(self, url: str, discovered_via: str) -> bool:
        try:
            inserted = await self.queue.enqueue_if_absent(
                url,
                discovered_via=discovered_via,
                priority=self.priority,
            )
        except InvalidUrl:
            logger.debug(f"Skipping invalid discovered URL: {url}")
            return False
        except Exception as exc:
            logger.warning(f"Failed to enqueue discovered URL {url}: {exc!r}")
            return False

        if inserted:
            LINKS_ENQUEUED.labels(discovered_via=discovered_via).inc()
        return inserted
