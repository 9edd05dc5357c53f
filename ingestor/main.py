import asyncio
import signal
from datetime import timedelta

from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from ingestor.api.server import create_app, start_http_server
from ingestor.crawler import Crawler, CrawlSettings
from ingestor.fetcher import FetchClient
from ingestor.scheduler import TickScheduler, monitor_queue_size
from ingestor.storage.crawl_queue import MemoryCrawlQueue, QueuePolicy
from ingestor.storage.document_store import TortoiseDocumentStore
from ingestor.storage.postgres.postgres_init import close_postgres, init_postgres
from ingestor.storage.postgres.postgres_queue import PostgresCrawlQueue
from ingestor.utils.config_loader import Config, load_config
from ingestor.utils.logger import setup_logger
from ingestor.utils.robots import RobotsCache


def build_queue_policy(config: Config) -> QueuePolicy:
    return QueuePolicy(
        in_flight=timedelta(minutes=config.in_flight_minutes),
        success_interval=timedelta(hours=config.success_interval_hours),
        backoff_base=timedelta(minutes=config.backoff_base_minutes),
        backoff_max=timedelta(minutes=config.backoff_max_minutes),
    )


def build_queue(config: Config):
    policy = build_queue_policy(config)
    if config.queue_backend == "memory":
        return MemoryCrawlQueue(policy=policy)
    return PostgresCrawlQueue(config.database_url, policy=policy)


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting ingestion worker...")

    # ---- Storage ----
    await init_postgres(config.database_url)
    queue = build_queue(config)
    await queue.connect()
    store = TortoiseDocumentStore()

    # ---- Fetch pipeline ----
    fetcher = FetchClient(
        config.crawler_user_agent,
        per_host_concurrency=config.per_host_concurrency,
        politeness_delay=config.politeness_delay_ms / 1000,
        request_timeout=config.request_timeout,
        max_redirects=config.max_redirects,
    )
    robots = RobotsCache(
        config.crawler_user_agent,
        ttl_seconds=config.robots_ttl_seconds,
        timeout=config.robots_timeout,
    )
    crawler = Crawler(queue, store, fetcher, robots, CrawlSettings.from_config(config))

    # ---- HTTP front-end ----
    app = create_app(crawler, default_batch_size=config.default_batch_size)
    runner = await start_http_server(app, config.bind_host, config.bind_port)

    # ---- Background tasks ----
    background = [asyncio.create_task(monitor_queue_size(queue))]
    if config.tick_interval_seconds > 0:
        scheduler = TickScheduler(
            crawler,
            interval_seconds=config.tick_interval_seconds,
            batch_size=config.default_batch_size,
        )
        background.append(asyncio.create_task(scheduler.run()))

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info("Ingestion worker started successfully.")

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Shutting down...")
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)

        await runner.cleanup()
        await fetcher.aclose()
        await queue.close()
        await close_postgres()


# -------------------------------
# ENTRYPOINT
# -------------------------------
if __name__ == "__main__":
    asyncio.run(main())
