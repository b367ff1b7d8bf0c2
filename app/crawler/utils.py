from __future__ import annotations

import json
import logging
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import Any

from . import config

LOGGER = logging.getLogger("puc_crawler")
LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOGGER_LOCK = threading.Lock()
_LOGGER_INITIALISED = False


def _build_handlers(log_path: Path) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_path, encoding="utf-8"),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _configure_logger(log_path: Path) -> None:
    """Point the shared crawler logger at stdout and ``log_path``.

    Called from several threads at startup; handlers are swapped under a lock
    so no line is written through a half-closed file handler.
    """

    global _LOGGER_INITIALISED

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with _LOGGER_LOCK:
        previous = list(LOGGER.handlers)
        for handler in _build_handlers(log_path):
            LOGGER.addHandler(handler)
        for handler in previous:
            LOGGER.removeHandler(handler)
            handler.close()
        LOGGER.setLevel(logging.INFO)
        LOGGER.propagate = False
        _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    if _LOGGER_INITIALISED:
        return
    _configure_logger(config.LOG_FILE)


def setup_run_logger() -> Path:
    """Rotate to a fresh timestamped log file for the current run."""

    ensure_dirs()
    timestamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
    log_path = config.LOG_DIR / f"crawl_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def ensure_dirs() -> None:
    """Ensure that the crawler's data and log directories exist."""

    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    config.RUNS_DIR.mkdir(parents=True, exist_ok=True)


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active log file."""

    _ensure_logger()
    LOGGER.info(message)


def now_iso() -> str:
    """Return the current UTC time formatted for storage and snapshots."""

    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def disk_has_room(min_free_mb: int, path: Path) -> bool:
    """Return ``True`` if the filesystem holding ``path`` has enough free space."""

    try:
        usage = shutil.disk_usage(path)
    except OSError as exc:
        log_line(f"[FS] Unable to stat {path}: {exc}")
        return False
    return usage.free >= min_free_mb * 1024 * 1024


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` to ``path`` via a temp file and rename."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


def append_json_line(path: Path, record: dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False) + "\n")


def load_json_lines(path: Path) -> list[dict[str, Any]]:
    """Return every decodable JSON object from a JSON-lines file."""

    path = Path(path)
    if not path.exists():
        return []
    records: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(record, dict):
                records.append(record)
    return records


__all__ = [
    "LOGGER",
    "append_json_line",
    "disk_has_room",
    "ensure_dirs",
    "load_json_lines",
    "log_line",
    "now_iso",
    "setup_run_logger",
    "write_json_atomic",
]
