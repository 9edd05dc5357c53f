from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# -------------------------
# Fetch Metrics
# -------------------------

FETCH_REQUESTS = Counter(
    "ingestor_fetch_requests_total",
    "HTTP page fetches by outcome",
    ["outcome"],
)

FETCH_LATENCY = Histogram(
    "ingestor_fetch_latency_seconds",
    "Time spent on the wire per fetch (politeness delay excluded)",
)

# -------------------------
# Robots Metrics
# -------------------------

ROBOTS_BLOCKED = Counter(
    "ingestor_robots_blocked_total",
    "URLs skipped because robots.txt disallows them",
)

ROBOTS_FAIL_OPEN = Counter(
    "ingestor_robots_fail_open_total",
    "robots.txt lookups that could not complete and defaulted to allow",
)

# -------------------------
# Pipeline Metrics
# -------------------------

DOCUMENTS_STORED = Counter(
    "ingestor_documents_stored_total",
    "Documents upserted into the document store",
)

ITEMS_SUCCEEDED = Counter(
    "ingestor_items_succeeded_total",
    "Queue items rescheduled as successful",
    ["outcome"],
)

ITEMS_FAILED = Counter(
    "ingestor_items_failed_total",
    "Queue items rescheduled as failed",
    ["reason"],
)

LINKS_ENQUEUED = Counter(
    "ingestor_links_enqueued_total",
    "New queue rows created",
    ["discovered_via"],
)

TICK_DURATION = Histogram(
    "ingestor_tick_duration_seconds",
    "Wall-clock duration of a crawl tick",
)

# -------------------------
# Queue Metrics
# -------------------------

QUEUE_DUE = Gauge(
    "ingestor_queue_due",
    "Queue items whose next fetch time has passed",
)


def render_latest() -> tuple[bytes, str]:
    """Exposition payload and its bare content type (aiohttp rejects a charset here)."""
    return generate_latest(), CONTENT_TYPE_LATEST.split(";")[0]
