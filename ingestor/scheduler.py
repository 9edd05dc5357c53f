import asyncio

from loguru import logger

from ingestor.crawler import Crawler
from ingestor.monitoring.metrics import QUEUE_DUE


class TickScheduler:
    """Runs crawl ticks on a fixed interval, seeding the queue while it is empty."""

    def __init__(
        self,
        crawler: Crawler,
        interval_seconds: float = 10,
        batch_size: int = 50,
    ):
        self.crawler = crawler
        self.queue = crawler.queue
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size

    async def _seed_if_empty(self) -> None:
        if await self.queue.count_total() == 0:
            added = await self.crawler.seed_default_sources()
            logger.info(f"Queue was empty; seeded {added} URLs")

    async def run_once(self) -> None:
        await self._seed_if_empty()
        await self.crawler.tick(self.batch_size)

    async def run(self) -> None:
        logger.info(f"Tick scheduler started (every {self.interval_seconds}s, batch={self.batch_size})")
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled tick failed")
            await asyncio.sleep(self.interval_seconds)


async def monitor_queue_size(queue, interval_seconds: float = 5.0) -> None:
    while True:
        try:
            QUEUE_DUE.set(await queue.count_due())
        except Exception as e:
            logger.error(f"Queue monitor error: {e}")
        await asyncio.sleep(interval_seconds)
