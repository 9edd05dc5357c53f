from __future__ import annotations

from typing import Optional


class CrawlError(Exception):
    """Base class for per-URL crawl failures.

    ``reason`` is the short string recorded on the queue row (``last_error``)
    and used as the metrics label, so it must stay low-cardinality.
    """

    reason = "crawl_error"

    def __init__(self, url: str, detail: str = "", *, status_code: Optional[int] = None):
        self.url = url
        self.detail = detail
        self.status_code = status_code
        message = f"{self.reason}: {url}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    def describe(self) -> str:
        if self.detail:
            return f"{self.reason}: {self.detail}"[:500]
        return self.reason


class InvalidUrl(CrawlError):
    reason = "invalid_url"


class RobotsBlocked(CrawlError):
    reason = "robots_blocked"


class NetworkError(CrawlError):
    reason = "network_error"


class HttpStatusError(CrawlError):
    reason = "http_status"

    def __init__(self, url: str, status_code: int):
        super().__init__(url, f"status {status_code}", status_code=status_code)
        self.reason = f"http_{status_code}"


class UnsupportedContentType(CrawlError):
    reason = "unsupported_content_type"


class ExtractionError(CrawlError):
    reason = "extraction_error"


class StoreError(CrawlError):
    reason = "store_error"


class UnexpectedError(CrawlError):
    reason = "unexpected"
