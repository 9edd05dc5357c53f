import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import httpx
from loguru import logger

from ingestor.errors import InvalidUrl, NetworkError
from ingestor.monitoring.metrics import FETCH_LATENCY, FETCH_REQUESTS
from ingestor.utils.url_utils import get_host


HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class FetchResult:
    status_code: int
    content_type: str
    body: bytes
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    final_url: Optional[str] = None
    redirect_count: int = 0

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_html(self) -> bool:
        return self.content_type.lower().startswith(HTML_CONTENT_TYPES)


class FetchClient:
    """httpx wrapper that enforces per-host concurrency and a fixed politeness delay.

    Each request holds one of the host's permits for the politeness sleep and
    the request itself, so a host sees at most ``per_host_concurrency``
    requests per ``politeness_delay`` seconds.
    """

    def __init__(
        self,
        user_agent: str,
        *,
        per_host_concurrency: int = 2,
        politeness_delay: float = 0.35,
        request_timeout: float = 25.0,
        max_redirects: int = 8,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent
        self.per_host_concurrency = max(1, per_host_concurrency)
        self.politeness_delay = max(0.0, politeness_delay)
        self.http = httpx.AsyncClient(
            headers={"User-Agent": user_agent, **DEFAULT_HEADERS},
            timeout=httpx.Timeout(timeout=request_timeout),
            follow_redirects=True,
            max_redirects=max_redirects,
            limits=httpx.Limits(max_keepalive_connections=32, keepalive_expiry=30.0),
            transport=transport,
        )
        self._host_slots: Dict[str, asyncio.Semaphore] = {}
        # holders plus waiters; a host's semaphore is dropped when this hits zero
        self._host_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _host_permit(self, host: str) -> AsyncIterator[None]:
        slot = self._host_slots.get(host)
        if slot is None:
            slot = self._host_slots[host] = asyncio.Semaphore(self.per_host_concurrency)
        self._host_users[host] = self._host_users.get(host, 0) + 1
        try:
            async with slot:
                yield
        finally:
            self._host_users[host] -= 1
            if not self._host_users[host]:
                del self._host_users[host]
                del self._host_slots[host]

    async def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResult:
        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        async with self._host_permit(get_host(url)):
            await asyncio.sleep(self.politeness_delay)
            start = time.perf_counter()
            try:
                resp = await self.http.get(url, headers=headers)
            except httpx.InvalidURL as exc:
                FETCH_REQUESTS.labels(outcome="invalid_url").inc()
                raise InvalidUrl(url, str(exc)) from exc
            except httpx.TooManyRedirects as exc:
                FETCH_REQUESTS.labels(outcome="network_error").inc()
                raise NetworkError(url, "redirect limit exceeded") from exc
            except httpx.HTTPError as exc:
                FETCH_REQUESTS.labels(outcome="network_error").inc()
                raise NetworkError(url, f"{exc.__class__.__name__}: {exc}") from exc
            finally:
                FETCH_LATENCY.observe(time.perf_counter() - start)

        result = FetchResult(
            status_code=resp.status_code,
            content_type=resp.headers.get("Content-Type") or "",
            body=b"" if resp.status_code == 304 else resp.content,
            etag=resp.headers.get("ETag"),
            last_modified=resp.headers.get("Last-Modified"),
            final_url=str(resp.url),
            redirect_count=len(resp.history),
        )

        if result.not_modified:
            FETCH_REQUESTS.labels(outcome="not_modified").inc()
        elif result.is_success:
            FETCH_REQUESTS.labels(outcome="ok").inc()
        else:
            FETCH_REQUESTS.labels(outcome="http_error").inc()

        logger.debug(
            f"Fetched {url} status={result.status_code} bytes={len(result.body)} "
            f"redirects={result.redirect_count}"
        )
        return result

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
