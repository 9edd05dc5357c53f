import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from ingestor.utils.config_loader import load_environment


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure .env defaults are available for every test."""

    # Clear key variables so tests always use the .env / config.yaml baseline
    # unless they explicitly override values via monkeypatch.
    for key in [
        "DATABASE_URL",
        "QUEUE_BACKEND",
        "WORKER_BIND",
        "CRAWLER_USER_AGENT",
        "PER_HOST_CONCURRENCY",
        "POLITENESS_DELAY_MS",
        "ROBOTS_TTL_SECONDS",
        "MAX_BATCH_SIZE",
        "SEED_URLS",
        "INGESTOR_CONFIG",
        "WORKER_ID",
    ]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def anyio_backend():
    """The code under test is built on asyncio; run anyio-marked tests there only."""

    return "asyncio"
