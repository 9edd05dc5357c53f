from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from ingestor.utils.url_utils import ensure_crawlable_url


DISCOVERED_VIA_SEED = "seed"
DISCOVERED_VIA_LINK = "link"
DISCOVERED_VIA_RSS = "rss"
DISCOVERED_VIA_SITEMAP = "sitemap"


@dataclass
class QueueItem:
    id: int
    url: str
    discovered_via: Optional[str] = None
    priority: int = 0
    # None means parked: the item is never due again.
    next_fetch_at: Optional[datetime] = None
    attempts: int = 0
    last_status: Optional[int] = None
    last_error: Optional[str] = None


@dataclass
class QueuePolicy:
    """Scheduling windows shared by every queue backend.

    Priorities follow one convention everywhere: a higher number is claimed
    sooner.
    """

    in_flight: timedelta = timedelta(minutes=5)
    success_interval: timedelta = timedelta(hours=12)
    backoff_base: timedelta = timedelta(minutes=30)
    backoff_max: timedelta = timedelta(hours=6)

    def backoff_for(self, attempts: int) -> timedelta:
        return backoff_delay(attempts, self.backoff_base, self.backoff_max)


def backoff_delay(attempts: int, base: timedelta, cap: timedelta) -> timedelta:
    """Linear backoff, non-decreasing in ``attempts``: base, 2*base, ... up to cap."""
    return min(base * max(attempts, 1), cap)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryCrawlQueue:
    """Single-process queue backend.

    Claims are stamped under one asyncio.Lock, which gives the same mutual
    exclusion as the Postgres SKIP LOCKED claim for callers sharing the
    event loop. State is lost on restart.
    """

    def __init__(self, policy: Optional[QueuePolicy] = None, clock: Callable[[], datetime] = utcnow):
        self.policy = policy or QueuePolicy()
        self.clock = clock
        self._rows: Dict[str, QueueItem] = {}
        self._by_id: Dict[int, QueueItem] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        logger.info("Using in-memory crawl queue")

    async def close(self) -> None:
        return None

    # -------------------------------------------------------
    # enqueue
    # -------------------------------------------------------

    async def enqueue_if_absent(
        self,
        url: str,
        discovered_via: Optional[str] = None,
        priority: int = 0,
    ) -> bool:
        url = ensure_crawlable_url(url)
        async with self._lock:
            existing = self._rows.get(url)
            if existing is not None:
                if priority > existing.priority:
                    existing.priority = priority
                return False

            item = QueueItem(
                id=next(self._ids),
                url=url,
                discovered_via=discovered_via,
                priority=priority,
                next_fetch_at=self.clock(),
            )
            self._rows[url] = item
            self._by_id[item.id] = item
            return True

    # -------------------------------------------------------
    # claim
    # -------------------------------------------------------

    async def dequeue_due(self, batch_size: int) -> List[QueueItem]:
        if batch_size <= 0:
            return []

        async with self._lock:
            now = self.clock()
            due = [
                item
                for item in self._rows.values()
                if item.next_fetch_at is not None and item.next_fetch_at <= now
            ]
            due.sort(key=lambda i: (-i.priority, i.next_fetch_at, i.id))

            claimed = []
            for item in due[:batch_size]:
                item.attempts += 1
                item.next_fetch_at = now + self.policy.in_flight
                claimed.append(replace(item))
            return claimed

    # -------------------------------------------------------
    # completion
    # -------------------------------------------------------

    async def mark_success(self, item_id: int, status_code: Optional[int] = None) -> None:
        async with self._lock:
            item = self._by_id.get(item_id)
            if item is None:
                return
            item.next_fetch_at = self.clock() + self.policy.success_interval
            item.attempts = 0
            item.last_status = status_code
            item.last_error = None

    async def mark_failed(
        self,
        item_id: int,
        attempts: int,
        reason: str,
        status_code: Optional[int] = None,
    ) -> None:
        async with self._lock:
            item = self._by_id.get(item_id)
            if item is None:
                return
            item.next_fetch_at = self.clock() + self.policy.backoff_for(attempts)
            item.last_status = status_code
            item.last_error = reason

    async def mark_parked(self, item_id: int, reason: str, status_code: Optional[int] = None) -> None:
        async with self._lock:
            item = self._by_id.get(item_id)
            if item is None:
                return
            item.next_fetch_at = None
            item.last_status = status_code
            item.last_error = reason

    # -------------------------------------------------------
    # inspection
    # -------------------------------------------------------

    async def count_due(self) -> int:
        now = self.clock()
        return sum(
            1
            for item in self._rows.values()
            if item.next_fetch_at is not None and item.next_fetch_at <= now
        )

    async def count_total(self) -> int:
        return len(self._rows)

    async def get(self, url: str) -> Optional[QueueItem]:
        item = self._rows.get(url)
        return replace(item) if item is not None else None
