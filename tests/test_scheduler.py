import asyncio

import pytest

from ingestor.monitoring.metrics import QUEUE_DUE
from ingestor.scheduler import TickScheduler, monitor_queue_size
from ingestor.storage.crawl_queue import MemoryCrawlQueue


class StubCrawler:
    def __init__(self, queue):
        self.queue = queue
        self.seeded = 0
        self.ticks = []

    async def seed_default_sources(self):
        self.seeded += 1
        return int(await self.queue.enqueue_if_absent("https://example.org/", "seed", 100))

    async def tick(self, batch_size):
        self.ticks.append(batch_size)


@pytest.mark.anyio
async def test_run_once_seeds_only_an_empty_queue():
    queue = MemoryCrawlQueue()
    crawler = StubCrawler(queue)
    scheduler = TickScheduler(crawler, interval_seconds=0, batch_size=7)

    await scheduler.run_once()
    await scheduler.run_once()

    assert crawler.seeded == 1
    assert crawler.ticks == [7, 7]


@pytest.mark.anyio
async def test_monitor_queue_size_publishes_due_count():
    queue = MemoryCrawlQueue()
    await queue.enqueue_if_absent("https://example.org/a")
    await queue.enqueue_if_absent("https://example.org/b")

    task = asyncio.create_task(monitor_queue_size(queue, interval_seconds=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert QUEUE_DUE._value.get() == 2
