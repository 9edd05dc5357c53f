from aiohttp import web
from loguru import logger

from ingestor.crawler import Crawler
from ingestor.errors import CrawlError, StoreError
from ingestor.monitoring.metrics import render_latest


CRAWLER_KEY = web.AppKey("crawler", Crawler)
DEFAULT_BATCH_KEY = web.AppKey("default_batch_size", int)


async def _json_body(request: web.Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


# -------------------------
# Handlers
# -------------------------

async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def ingest_url(request: web.Request) -> web.Response:
    payload = await _json_body(request)
    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        return _error(400, "bad request: 'url' is required")

    crawler = request.app[CRAWLER_KEY]
    try:
        document = await crawler.ingest_url(url)
    except StoreError as exc:
        logger.error(f"Ingest store failure for {url}: {exc}")
        return _error(500, "store_failed")
    except CrawlError as exc:
        logger.info(f"Ingest rejected for {url}: {exc}")
        return _error(400, str(exc))

    return web.json_response(
        {
            "ok": True,
            "url": document.url,
            "title": document.title,
            "bytes": len(document.body_text.encode("utf-8")),
        }
    )


async def crawl_seed(request: web.Request) -> web.Response:
    try:
        enqueued = await request.app[CRAWLER_KEY].seed_default_sources()
    except Exception as exc:
        logger.exception("Seeding failed")
        return _error(500, str(exc))
    return web.json_response({"ok": True, "enqueued": enqueued})


async def crawl_tick(request: web.Request) -> web.Response:
    try:
        batch = int(request.query.get("batch", ""))
    except ValueError:
        batch = request.app[DEFAULT_BATCH_KEY]

    try:
        result = await request.app[CRAWLER_KEY].tick(batch)
    except Exception as exc:
        logger.exception("Crawl tick failed")
        return _error(500, str(exc))
    return web.json_response({"ok": True, **result.as_dict()})


async def crawl_discover(request: web.Request) -> web.Response:
    payload = await _json_body(request)
    origin = payload.get("origin")
    if not isinstance(origin, str) or not origin.strip():
        return _error(400, "bad request: 'origin' is required")

    counts = await request.app[CRAWLER_KEY].discover(origin)
    return web.json_response({"ok": True, **counts})


async def metrics_handler(request: web.Request) -> web.Response:
    data, content_type = render_latest()
    return web.Response(body=data, content_type=content_type)


# -------------------------
# App
# -------------------------

def create_app(crawler: Crawler, default_batch_size: int = 50) -> web.Application:
    app = web.Application()
    app[CRAWLER_KEY] = crawler
    app[DEFAULT_BATCH_KEY] = default_batch_size

    app.router.add_get("/health", health)
    app.router.add_post("/ingest/url", ingest_url)
    app.router.add_post("/crawl/seed", crawl_seed)
    app.router.add_post("/crawl/tick", crawl_tick)
    app.router.add_post("/crawl/discover", crawl_discover)
    app.router.add_get("/metrics", metrics_handler)
    return app


async def start_http_server(app: web.Application, host: str = "127.0.0.1", port: int = 5002) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Worker listening on {host}:{port}")
    return runner
