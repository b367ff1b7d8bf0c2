"""Configuration constants for the PUC document crawler."""
from __future__ import annotations

import os
from datetime import date
from pathlib import Path


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _parse_int(env_var: str, default: int) -> int:
    try:
        return int(os.getenv(env_var, str(default)))
    except ValueError:
        return default


def _parse_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


DATA_DIR: Path = Path(os.getenv("PUC_CRAWLER_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
DB_PATH: Path = DATA_DIR / "puc_documents.db"
# Discovered-cases pipeline snapshot used for crash recovery.
CHECKPOINT_FILE: Path = DATA_DIR / "discovered_cases_pipeline.json"
BLACKLIST_LOG: Path = DATA_DIR / "blacklisted_documents.jsonl"
SUMMARY_FILE: Path = DATA_DIR / "last_summary.json"
RUNS_DIR: Path = DATA_DIR / "runs"

# Crawl window (inclusive years)
START_YEAR: int = _parse_int("PUC_CRAWLER_START_YEAR", 2010)
END_YEAR: int = _parse_int("PUC_CRAWLER_END_YEAR", 2024)

# Worker pool sizes; the worker count is the single concurrency knob.
MAX_WORKERS: int = _parse_int("CRAWLER_MAX_WORKERS", 30)
NIGHTLY_MAX_WORKERS: int = _parse_int("NIGHTLY_MAX_WORKERS", 5)

# Chunking
CHUNK_SIZE: int = _parse_int("PUC_CRAWLER_CHUNK_SIZE", 1500)
CHUNK_OVERLAP: int = _parse_int("PUC_CRAWLER_CHUNK_OVERLAP", 200)
CHUNK_INSERT_BATCH: int = _parse_int("PUC_CRAWLER_CHUNK_INSERT_BATCH", 100)

# Retry ledger
MAX_DOCUMENT_ATTEMPTS: int = _parse_int("PUC_CRAWLER_MAX_ATTEMPTS", 3)

# Escalating timing tiers, (label, wait in milliseconds).
TEXT_LAYER_TIERS: tuple[tuple[str, int], ...] = (
    ("fast", 200),
    ("medium", 400),
    ("slow", 800),
)
EMBEDDED_VIEWER_TIERS: tuple[tuple[str, int], ...] = (
    ("fast", 300),
    ("medium", 600),
    ("slow", 1200),
)
IFRAME_ACCESS_TIERS: tuple[tuple[str, int], ...] = (
    ("quick", 2000),
    ("patient", 4000),
    ("very_patient", 8000),
)

# Minimum characters for a page to count as rendered.
TEXT_LAYER_MIN_PAGE_CHARS: int = 10
EMBEDDED_VIEWER_MIN_PAGE_CHARS: int = 20
# Embedded viewer pages are read as joined spans; shorter joins are placeholders.
EMBEDDED_VIEWER_MIN_SPAN_CHARS: int = 50

# Playwright timeouts (seconds)
DOCUMENT_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PUC_CRAWLER_DOCUMENT_NAV_TIMEOUT_SECONDS", 120
)
LISTING_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PUC_CRAWLER_LISTING_NAV_TIMEOUT_SECONDS", 60
)
IFRAME_SELECTOR_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PUC_CRAWLER_IFRAME_SELECTOR_TIMEOUT_SECONDS", 15
)

# Short sleeps (seconds) for viewer and listing settle
DOCUMENT_SETTLE_SECONDS: float = float(os.getenv("PUC_CRAWLER_DOCUMENT_SETTLE_SECONDS", "2.0"))
TEXT_MODE_SETTLE_SECONDS: float = float(os.getenv("PUC_CRAWLER_TEXT_MODE_SETTLE_SECONDS", "3.0"))
PAGINATION_SETTLE_SECONDS: float = float(os.getenv("PUC_CRAWLER_PAGINATION_SETTLE_SECONDS", "2.0"))

# Queue waits (seconds)
QUEUE_ACTIVE_WAIT_SECONDS: float = float(os.getenv("PUC_CRAWLER_QUEUE_ACTIVE_WAIT", "120"))
QUEUE_DRAINED_WAIT_SECONDS: float = float(os.getenv("PUC_CRAWLER_QUEUE_DRAINED_WAIT", "30"))
QUEUE_POLL_SECONDS: float = float(os.getenv("PUC_CRAWLER_QUEUE_POLL", "1.0"))

# Discovery checkpoint cadence
CHECKPOINT_EVERY_ACCEPTED: int = 10

PROGRESS_UPDATE_INTERVAL_SECONDS: float = 30.0

MIN_FREE_MB: int = _parse_int("MIN_FREE_MB", 200)
HEADLESS: bool = _parse_bool("PUC_CRAWLER_HEADLESS", True)

BASE_URL: str = "https://puc.idaho.gov"
CASE_LISTING_URL: str = f"{BASE_URL}/case"
DOCUMENT_HOST_MARKER: str = "lf-puc.idaho.gov"

# (utility type, listing url, case status, max listing pages)
LISTING_SOURCES: tuple[tuple[str, str, str, int], ...] = (
    ("electric", f"{CASE_LISTING_URL}?util=1&closed=0", "open", 45),
    ("natural_gas", f"{CASE_LISTING_URL}?util=4&closed=0", "open", 4),
)

# Embedding service credentials; the crawler only leaves embeddings NULL but
# the health check reports whether the downstream service can run.
EMBEDDING_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
REQUIRE_EMBEDDING_KEY: bool = _parse_bool("PUC_CRAWLER_REQUIRE_EMBEDDING_KEY", True)

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

MODE_HISTORICAL = "historical"
MODE_NIGHTLY = "nightly"


def is_nightly_mode(mode: str) -> bool:
    """Return ``True`` when ``mode`` represents the incremental nightly crawl."""

    return str(mode).strip().lower() == MODE_NIGHTLY


def nightly_end_year() -> int:
    return date.today().year
