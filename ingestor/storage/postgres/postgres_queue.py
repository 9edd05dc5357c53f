from __future__ import annotations

import os
from typing import List, Optional

import asyncpg
from loguru import logger

from ingestor.storage.crawl_queue import QueueItem, QueuePolicy
from ingestor.utils.db_utils import to_postgres_dsn
from ingestor.utils.url_utils import ensure_crawlable_url


QUEUE_COLUMNS = "id, url, discovered_via, priority, next_fetch_at, attempts, last_status, last_error"

ENQUEUE_SQL = """
INSERT INTO crawl_queue (url, discovered_via, priority, next_fetch_at, attempts, created_at, updated_at)
VALUES ($1, $2, $3, NOW(), 0, NOW(), NOW())
ON CONFLICT (url) DO UPDATE
    SET priority = EXCLUDED.priority,
        updated_at = NOW()
    WHERE crawl_queue.priority < EXCLUDED.priority
RETURNING (xmax = 0) AS inserted
"""

# One statement: rows locked by a concurrent claimer are skipped, and the
# in-flight stamp lands before the lock is released.
CLAIM_SQL = f"""
WITH due AS (
    SELECT id
    FROM crawl_queue
    WHERE next_fetch_at IS NOT NULL AND next_fetch_at <= NOW()
    ORDER BY priority DESC, next_fetch_at ASC, id ASC
    FOR UPDATE SKIP LOCKED
    LIMIT $1
)
UPDATE crawl_queue AS q
SET attempts = q.attempts + 1,
    next_fetch_at = NOW() + $2::interval,
    updated_at = NOW()
FROM due
WHERE q.id = due.id
RETURNING {", ".join("q." + c.strip() for c in QUEUE_COLUMNS.split(","))}
"""

SUCCESS_SQL = """
UPDATE crawl_queue
SET next_fetch_at = NOW() + $1::interval,
    attempts = 0,
    last_status = $2,
    last_error = NULL,
    updated_at = NOW()
WHERE id = $3
"""

FAILURE_SQL = """
UPDATE crawl_queue
SET next_fetch_at = NOW() + $1::interval,
    last_status = $2,
    last_error = $3,
    updated_at = NOW()
WHERE id = $4
"""

PARK_SQL = """
UPDATE crawl_queue
SET next_fetch_at = NULL,
    last_status = $1,
    last_error = $2,
    updated_at = NOW()
WHERE id = $3
"""


def _row_to_item(row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        url=row["url"],
        discovered_via=row["discovered_via"],
        priority=row["priority"],
        next_fetch_at=row["next_fetch_at"],
        attempts=row["attempts"],
        last_status=row["last_status"],
        last_error=row["last_error"],
    )


class PostgresCrawlQueue:
    """Durable crawl queue on the ``crawl_queue`` table via asyncpg."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        policy: Optional[QueuePolicy] = None,
        min_size: int = 1,
        max_size: int = 10,
    ) -> None:
        url = database_url or os.getenv("DATABASE_URL")
        if not url:
            raise ValueError("PostgresCrawlQueue needs a database_url or DATABASE_URL")

        self.database_url = to_postgres_dsn(url)
        self.policy = policy or QueuePolicy()
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[asyncpg.Pool] = None

    # -------------------------------------------------------
    # Connection
    # -------------------------------------------------------

    async def connect(self) -> None:
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        except Exception:
            logger.exception("Failed to connect crawl queue database")
            raise
        logger.info("Connected to crawl queue database")

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None

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
        if not self.pool:
            return False

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(ENQUEUE_SQL, url, discovered_via, priority)

        inserted = bool(row and row["inserted"])
        if inserted:
            logger.debug(f"Enqueued {url} via={discovered_via} priority={priority}")
        return inserted

    # -------------------------------------------------------
    # claim
    # -------------------------------------------------------

    async def dequeue_due(self, batch_size: int) -> List[QueueItem]:
        if not self.pool or batch_size <= 0:
            return []

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(CLAIM_SQL, batch_size, self.policy.in_flight)

        items = [_row_to_item(row) for row in rows]
        # UPDATE ... RETURNING does not keep the CTE order.
        items.sort(key=lambda i: (-i.priority, i.id))
        return items

    # -------------------------------------------------------
    # completion
    # -------------------------------------------------------

    async def mark_success(self, item_id: int, status_code: Optional[int] = None) -> None:
        if not self.pool:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(SUCCESS_SQL, self.policy.success_interval, status_code, item_id)

    async def mark_failed(
        self,
        item_id: int,
        attempts: int,
        reason: str,
        status_code: Optional[int] = None,
    ) -> None:
        if not self.pool:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(
                FAILURE_SQL,
                self.policy.backoff_for(attempts),
                status_code,
                reason[:500],
                item_id,
            )

    async def mark_parked(self, item_id: int, reason: str, status_code: Optional[int] = None) -> None:
        if not self.pool:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(PARK_SQL, status_code, reason[:500], item_id)

    # -------------------------------------------------------
    # inspection
    # -------------------------------------------------------

    async def count_due(self) -> int:
        if not self.pool:
            return 0
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT count(*) FROM crawl_queue "
                "WHERE next_fetch_at IS NOT NULL AND next_fetch_at <= NOW()"
            )

    async def count_total(self) -> int:
        if not self.pool:
            return 0
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT count(*) FROM crawl_queue")

    async def get(self, url: str) -> Optional[QueueItem]:
        if not self.pool:
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT {QUEUE_COLUMNS} FROM crawl_queue WHERE url = $1", url)
        return _row_to_item(row) if row else None
