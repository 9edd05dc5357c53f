import httpx
import pytest
from aiohttp.test_utils import TestClient, TestServer

from ingestor.api.server import create_app
from ingestor.crawler import Crawler, TickResult
from ingestor.errors import InvalidUrl, StoreError
from ingestor.fetcher import FetchClient
from ingestor.storage.document_store import Document
from ingestor.storage.crawl_queue import MemoryCrawlQueue, utcnow
from ingestor.utils.robots import RobotsCache


class StubCrawler:
    def __init__(self, *, ingest_error=None):
        self.ingest_error = ingest_error
        self.tick_batches = []
        self.discovered = []

    async def ingest_url(self, url):
        if self.ingest_error is not None:
            raise self.ingest_error
        return Document(
            url=url,
            fetched_at=utcnow(),
            body_text="Hello wörld",
            http_status=200,
            title="Example",
        )

    async def seed_default_sources(self):
        return 3

    async def tick(self, batch_size):
        self.tick_batches.append(batch_size)
        return TickResult(processed_ok=2, failed=1, newly_enqueued=4)

    async def discover(self, origin):
        self.discovered.append(origin)
        return {"feeds": 5, "sitemap": 7}


@pytest.mark.asyncio
async def test_health_and_metrics():
    async with TestClient(TestServer(create_app(StubCrawler()))) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

        resp = await client.get("/metrics")
        assert resp.status == 200
        assert "ingestor_fetch_requests" in await resp.text()


@pytest.mark.asyncio
async def test_ingest_url_returns_summary():
    async with TestClient(TestServer(create_app(StubCrawler()))) as client:
        resp = await client.post("/ingest/url", json={"url": "https://example.org/"})

        assert resp.status == 200
        assert await resp.json() == {
            "ok": True,
            "url": "https://example.org/",
            "title": "Example",
            "bytes": len("Hello wörld".encode("utf-8")),
        }


@pytest.mark.asyncio
async def test_ingest_url_maps_errors_to_status_codes():
    async with TestClient(TestServer(create_app(StubCrawler()))) as client:
        resp = await client.post("/ingest/url", data=b"not json")
        assert resp.status == 400

        resp = await client.post("/ingest/url", json={"nope": 1})
        assert resp.status == 400

    invalid = StubCrawler(ingest_error=InvalidUrl("ftp://x", "unsupported scheme 'ftp'"))
    async with TestClient(TestServer(create_app(invalid))) as client:
        resp = await client.post("/ingest/url", json={"url": "ftp://x"})
        body = await resp.json()
        assert resp.status == 400
        assert body["ok"] is False
        assert "invalid_url" in body["error"]

    failing = StubCrawler(ingest_error=StoreError("https://example.org/", "db down"))
    async with TestClient(TestServer(create_app(failing))) as client:
        resp = await client.post("/ingest/url", json={"url": "https://example.org/"})
        assert resp.status == 500
        assert await resp.json() == {"ok": False, "error": "store_failed"}


@pytest.mark.asyncio
async def test_crawl_endpoints():
    crawler = StubCrawler()
    async with TestClient(TestServer(create_app(crawler, default_batch_size=50))) as client:
        resp = await client.post("/crawl/seed")
        assert await resp.json() == {"ok": True, "enqueued": 3}

        resp = await client.post("/crawl/tick?batch=10")
        assert await resp.json() == {"ok": True, "processedOk": 2, "failed": 1, "newlyEnqueued": 4}

        await client.post("/crawl/tick")
        await client.post("/crawl/tick?batch=lots")

        resp = await client.post("/crawl/discover", json={"origin": "https://example.org"})
        assert await resp.json() == {"ok": True, "feeds": 5, "sitemap": 7}

        resp = await client.post("/crawl/discover", json={})
        assert resp.status == 400

    assert crawler.tick_batches == [10, 50, 50]
    assert crawler.discovered == ["https://example.org"]


@pytest.mark.asyncio
async def test_ingest_url_rejects_unrepresentable_url_with_400():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(404)

    fetcher = FetchClient("TestBot/1.0", politeness_delay=0, transport=httpx.MockTransport(handler))
    crawler = Crawler(MemoryCrawlQueue(), None, fetcher, RobotsCache("TestBot/1.0"))

    async with TestClient(TestServer(create_app(crawler))) as client:
        for url in ("https://example.org/\x7f", "https://example.org:99999/"):
            resp = await client.post("/ingest/url", json={"url": url})
            assert resp.status == 400
            assert (await resp.json())["ok"] is False

        resp = await client.post("/crawl/discover", json={"origin": "https://example.org/\x7f"})
        assert await resp.json() == {"ok": True, "feeds": 0, "sitemap": 0}
    await fetcher.aclose()

    assert requested == []
