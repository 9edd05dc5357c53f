import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ingestor.discovery import Discovery
from ingestor.errors import (
    CrawlError,
    ExtractionError,
    HttpStatusError,
    InvalidUrl,
    RobotsBlocked,
    StoreError,
    UnexpectedError,
    UnsupportedContentType,
)
from ingestor.fetcher import FetchClient, FetchResult
from ingestor.monitoring.metrics import (
    DOCUMENTS_STORED,
    ITEMS_FAILED,
    ITEMS_SUCCEEDED,
    LINKS_ENQUEUED,
    ROBOTS_BLOCKED,
    TICK_DURATION,
)
from ingestor.parsing.html_extractor import content_hash, decode_body, extract_page
from ingestor.storage.crawl_queue import (
    DISCOVERED_VIA_LINK,
    DISCOVERED_VIA_SEED,
    QueueItem,
    utcnow,
)
from ingestor.storage.document_store import Document
from ingestor.utils.language import detect_language
from ingestor.utils.robots import RobotsCache
from ingestor.utils.url_utils import ensure_crawlable_url


POLICY_BACKOFF = "backoff"
POLICY_SKIP = "skip"


@dataclass
class CrawlSettings:
    max_batch_size: int = 64
    max_links_per_page: int = 100
    max_body_chars: int = 200_000
    seed_priority: int = 100
    discovery_priority: int = 10
    link_priority: int = 0
    seed_urls: List[str] = field(default_factory=list)
    # "backoff" retries non-HTML URLs like any failure, "skip" parks them for good
    unsupported_content_policy: str = POLICY_BACKOFF

    @classmethod
    def from_config(cls, config) -> "CrawlSettings":
        return cls(
            max_batch_size=config.max_batch_size,
            max_links_per_page=config.max_links_per_page,
            max_body_chars=config.max_body_chars,
            seed_priority=config.seed_priority,
            discovery_priority=config.discovery_priority,
            link_priority=config.link_priority,
            seed_urls=list(config.seed_urls),
            unsupported_content_policy=config.unsupported_content_policy,
        )


@dataclass
class TickResult:
    processed_ok: int = 0
    failed: int = 0
    newly_enqueued: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "processedOk": self.processed_ok,
            "failed": self.failed,
            "newlyEnqueued": self.newly_enqueued,
        }


@dataclass
class _ItemOutcome:
    ok: bool
    enqueued: int = 0


class Crawler:
    """Claims due queue items and runs each through robots, fetch, extract and store."""

    def __init__(
        self,
        queue,
        store,
        fetcher: FetchClient,
        robots: RobotsCache,
        settings: Optional[CrawlSettings] = None,
        discovery: Optional[Discovery] = None,
    ):
        self.queue = queue
        self.store = store
        self.fetcher = fetcher
        self.robots = robots
        self.settings = settings or CrawlSettings()
        self.discovery = discovery or Discovery(
            fetcher, robots, queue, priority=self.settings.discovery_priority
        )

    # --------------------------
    #  Seeding / discovery
    # --------------------------
    async def seed_default_sources(self) -> int:
        enqueued = 0
        for url in self.settings.seed_urls:
            try:
                inserted = await self.queue.enqueue_if_absent(
                    url,
                    discovered_via=DISCOVERED_VIA_SEED,
                    priority=self.settings.seed_priority,
                )
            except InvalidUrl as exc:
                logger.warning(f"Ignoring invalid seed URL: {exc}")
                continue
            if inserted:
                enqueued += 1
                LINKS_ENQUEUED.labels(discovered_via=DISCOVERED_VIA_SEED).inc()

        logger.info(f"Seeded {enqueued} new URLs ({len(self.settings.seed_urls)} configured)")
        return enqueued

    async def discover(self, origin: str) -> Dict[str, int]:
        feeds = await self.discovery.discover_feeds(origin)
        sitemap = await self.discovery.discover_sitemap(origin)
        return {"feeds": feeds, "sitemap": sitemap}

    # --------------------------
    #  One-off ingest
    # --------------------------
    async def ingest_url(self, url: str) -> Document:
        """Fetch, extract and store a single URL right away, outside the queue."""
        url = ensure_crawlable_url(url)
        await self._check_robots(url)
        result = await self.fetcher.fetch(url)
        document, _ = self._build_document(url, result)
        await self._store(document)
        return document

    # --------------------------
    #  Tick
    # --------------------------
    async def tick(self, batch_size: int) -> TickResult:
        batch_size = max(1, min(batch_size, self.settings.max_batch_size))
        start = time.perf_counter()

        items = await self.queue.dequeue_due(batch_size)
        if not items:
            logger.debug("Tick: nothing due")
            return TickResult()

        outcomes = await asyncio.gather(*(self._process_item(item) for item in items))

        result = TickResult(
            processed_ok=sum(1 for o in outcomes if o.ok),
            failed=sum(1 for o in outcomes if not o.ok),
            newly_enqueued=sum(o.enqueued for o in outcomes),
        )
        elapsed = time.perf_counter() - start
        TICK_DURATION.observe(elapsed)
        logger.info(
            f"Tick: claimed={len(items)} ok={result.processed_ok} failed={result.failed} "
            f"new={result.newly_enqueued} in {elapsed:.2f}s"
        )
        return result

    async def _process_item(self, item: QueueItem) -> _ItemOutcome:
        """Every claimed item ends in exactly one reschedule call.

        If that call itself fails, the claim's in-flight window expires and the
        item becomes due again.
        """
        try:
            status_code, enqueued, outcome = await self._crawl_item(item)
        except InvalidUrl as exc:
            await self._reschedule_failure(item, exc, park=True)
            return _ItemOutcome(ok=False)
        except UnsupportedContentType as exc:
            logger.warning(f"Non-HTML content at {item.url}: {exc.detail} (policy={self.settings.unsupported_content_policy})")
            await self._reschedule_failure(
                item, exc, park=self.settings.unsupported_content_policy == POLICY_SKIP
            )
            return _ItemOutcome(ok=False)
        except CrawlError as exc:
            await self._reschedule_failure(item, exc)
            return _ItemOutcome(ok=False)
        except Exception as exc:
            logger.exception(f"Unexpected error processing {item.url}")
            await self._reschedule_failure(item, UnexpectedError(item.url, exc.__class__.__name__))
            return _ItemOutcome(ok=False)

        try:
            await self.queue.mark_success(item.id, status_code)
        except Exception:
            logger.exception(f"Could not reschedule {item.url} after success")
        ITEMS_SUCCEEDED.labels(outcome=outcome).inc()
        return _ItemOutcome(ok=True, enqueued=enqueued)

    async def _crawl_item(self, item: QueueItem) -> Tuple[int, int, str]:
        """(status_code, newly enqueued links, outcome label) for a successful item."""
        url = ensure_crawlable_url(item.url)
        await self._check_robots(url)

        etag, last_modified = await self._validators(url)
        result = await self.fetcher.fetch(url, etag=etag, last_modified=last_modified)
        if result.not_modified:
            logger.debug(f"Unchanged since last crawl: {url}")
            return result.status_code, 0, "not_modified"

        document, links = self._build_document(url, result)
        await self._store(document)
        enqueued = await self._enqueue_links(links)

        logger.info(
            f"Crawled: {url} (status={result.status_code}, chars={len(document.body_text)}, "
            f"links={len(links)}, new={enqueued})"
        )
        return result.status_code, enqueued, "stored"

    async def _reschedule_failure(self, item: QueueItem, exc: CrawlError, park: bool = False) -> None:
        reason = exc.describe()
        ITEMS_FAILED.labels(reason=exc.reason).inc()
        logger.warning(f"Failed {item.url} (attempt {item.attempts}): {reason}{' [parked]' if park else ''}")

        try:
            if park:
                await self.queue.mark_parked(item.id, reason, exc.status_code)
            else:
                await self.queue.mark_failed(item.id, item.attempts, reason, exc.status_code)
        except Exception:
            logger.exception(f"Could not reschedule {item.url} after failure")

    # --------------------------
    #  Pipeline stages
    # --------------------------
    async def _check_robots(self, url: str) -> None:
        if not await self.robots.allowed(self.fetcher.http, url):
            ROBOTS_BLOCKED.inc()
            logger.info(f"Disallowed by robots.txt for agent {self.robots.user_agent}: {url}")
            raise RobotsBlocked(url)

    async def _validators(self, url: str) -> Tuple[Optional[str], Optional[str]]:
        try:
            return await self.store.get_validators(url)
        except Exception as exc:
            logger.warning(f"Validator lookup failed for {url}, fetching unconditionally: {exc!r}")
            return None, None

    def _build_document(self, url: str, result: FetchResult) -> Tuple[Document, List[str]]:
        if not result.is_success:
            raise HttpStatusError(url, result.status_code)
        if not result.is_html:
            raise UnsupportedContentType(
                url, result.content_type or "missing content-type", status_code=result.status_code
            )

        try:
            page = extract_page(
                decode_body(result.body),
                result.final_url or url,
                max_links=self.settings.max_links_per_page,
                max_chars=self.settings.max_body_chars,
            )
        except Exception as exc:
            raise ExtractionError(url, f"{exc.__class__.__name__}: {exc}", status_code=result.status_code) from exc

        document = Document(
            url=url,
            fetched_at=utcnow(),
            title=page.title,
            description=page.description,
            body_text=page.body_text,
            content_type=result.content_type or None,
            http_status=result.status_code,
            content_hash=content_hash(result.body),
            lang=detect_language(page.body_text),
            etag=result.etag,
            last_modified=result.last_modified,
        )
        return document, page.links

    async def _store(self, document: Document) -> None:
        try:
            await self.store.upsert(document)
        except Exception as exc:
            logger.error(f"Store failed for {document.url}: {exc!r}")
            raise StoreError(document.url, f"{exc.__class__.__name__}: {exc}", status_code=document.http_status) from exc
        DOCUMENTS_STORED.inc()

    async def _enqueue_links(self, links: List[str]) -> int:
        enqueued = 0
        for link in links:
            try:
                inserted = await self.queue.enqueue_if_absent(
                    link,
                    discovered_via=DISCOVERED_VIA_LINK,
                    priority=self.settings.link_priority,
                )
            except InvalidUrl:
                continue
            except Exception as exc:
                logger.warning(f"Failed to enqueue {link}: {exc!r}")
                continue
            if inserted:
                enqueued += 1
                LINKS_ENQUEUED.labels(discovered_via=DISCOVERED_VIA_LINK).inc()
        return enqueued
