from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

import httpx

from ingestor.errors import InvalidUrl


ALLOWED_SCHEMES = ("http", "https")


def ensure_crawlable_url(url: str) -> str:
    """Validate an absolute http(s) URL and return it without its fragment.

    Raises InvalidUrl before any I/O happens, so callers can reject bad input
    without touching the queue or the network.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl(str(url), "empty url")

    raw = url.strip()
    try:
        parsed = urlparse(raw)
        hostname = parsed.hostname
        parsed.port  # ValueError outside 0-65535
    except ValueError as exc:
        raise InvalidUrl(raw, str(exc)) from exc

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrl(raw, f"unsupported scheme '{parsed.scheme}'")
    if not hostname:
        raise InvalidUrl(raw, "missing host")

    # httpx is stricter than urllib (control characters, bad IDNA hosts).
    try:
        httpx.URL(raw)
    except httpx.InvalidURL as exc:
        raise InvalidUrl(raw, str(exc)) from exc

    return strip_fragment(raw)


def strip_fragment(url: str) -> str:
    return urldefrag(url)[0]


def get_host(url: str) -> str:
    """Lower-cased host[:port] of a URL, or '' when it has none."""
    try:
        return urlparse(url).netloc.lower()
    except ValueError:
        return ""


def get_domain(url: str) -> str:
    """Host without the port."""
    return get_host(url).split(":", 1)[0]


def is_same_host(url1: str, url2: str) -> bool:
    host = get_host(url1)
    return bool(host) and host == get_host(url2)


def origin_of(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, "", "", "", ""))


def join_origin(origin: str, path: str) -> str:
    return urljoin(origin_of(origin) + "/", path.lstrip("/"))


def path_and_query(url: str) -> str:
    parsed = urlparse(url)
    key = parsed.path or "/"
    if parsed.query:
        key = f"{key}?{parsed.query}"
    return key
