import re
from urllib.parse import urlparse


# Static assets never yield HTML, so fetching them only burns politeness budget.
BLOCKED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".mp4", ".mp3",
    ".pdf", ".zip", ".rar", ".exe", ".apk", ".iso", ".tar", ".gz", ".7z",
    ".css", ".js", ".woff", ".woff2",
)

_BLOCKED_RE = re.compile(
    "(?:" + "|".join(re.escape(ext) for ext in BLOCKED_EXTENSIONS) + r")$",
    re.IGNORECASE,
)


def is_static_asset(url: str) -> bool:
    return bool(_BLOCKED_RE.search(urlparse(url).path))


def is_crawlable_link(url: str) -> bool:
    """Absolute http(s) link with a host that does not point at a static asset."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    if not parsed.netloc:
        return False
    return not is_static_asset(url)
