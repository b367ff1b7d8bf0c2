"""Run progress tracking and summary export."""

from __future__ import annotations

import threading
import time
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Optional

from . import config
from .logging_utils import _crawler_event
from .models import UploadResult
from .utils import log_line, write_json_atomic


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class ProgressTracker:
    """Thread-safe counters shared by every worker in a run.

    ``completed`` counts every document checked, new or duplicate; the other
    counters break that down. A progress summary is logged at most once per
    ``update_interval`` seconds, or on demand via ``force_update``.
    """

    def __init__(self, mode: str, *, update_interval: float | None = None) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self.mode = mode
        self.started_at = time.time()
        self.update_interval = (
            config.PROGRESS_UPDATE_INTERVAL_SECONDS if update_interval is None else update_interval
        )
        self.summary: Dict[str, int] = defaultdict(int)
        self._last_update = time.monotonic()
        self._lock = threading.Lock()

    def _bump(self, **increments: int) -> None:
        with self._lock:
            for key, value in increments.items():
                self.summary[key] += value
        self._maybe_update()

    def record_new_document(self, upload: UploadResult) -> None:
        self._bump(completed=1, new_documents=1, chunks_created=upload.chunks_created)

    def record_duplicate(self) -> None:
        self._bump(completed=1, duplicates_skipped=1)

    def record_empty(self) -> None:
        self._bump(skipped_empty=1)

    def record_error(self) -> None:
        self._bump(errors=1)

    def record_retry(self) -> None:
        self._bump(retries=1)

    def record_blacklisted(self) -> None:
        self._bump(errors=1, blacklisted=1)

    def record_name_collision(self) -> None:
        self._bump(name_collisions=1)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            counts = dict(self.summary)
        for key in (
            "completed",
            "new_documents",
            "duplicates_skipped",
            "chunks_created",
            "errors",
            "blacklisted",
            "retries",
            "skipped_empty",
            "name_collisions",
        ):
            counts.setdefault(key, 0)
        return counts

    def _maybe_update(self) -> None:
        now = time.monotonic()
        with self._lock:
            if now - self._last_update < self.update_interval:
                return
            self._last_update = now
        self._print_update()

    def force_update(self) -> None:
        with self._lock:
            self._last_update = time.monotonic()
        self._print_update()

    def _print_update(self) -> None:
        counts = self.snapshot()
        processed = counts["completed"] + counts["errors"]
        success_rate = (counts["completed"] / processed * 100.0) if processed else 0.0
        elapsed = int(time.time() - self.started_at)
        log_line(
            f"[PROGRESS] mode={self.mode} checked={counts['completed']} "
            f"new={counts['new_documents']} duplicates={counts['duplicates_skipped']} "
            f"errors={counts['errors']} blacklisted={counts['blacklisted']} "
            f"success={success_rate:.1f}% elapsed={elapsed // 60}:{elapsed % 60:02d}"
        )
        _crawler_event("progress", mode=self.mode, **counts)

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> Path:
        """Write the run summary to ``RUNS_DIR`` and ``SUMMARY_FILE``."""

        payload = {
            "run_id": self.run_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "summary": self.snapshot(),
            **(extra or {}),
        }
        path = Path(config.RUNS_DIR) / f"run_{self.run_id}.json"
        write_json_atomic(path, payload)
        write_json_atomic(config.SUMMARY_FILE, payload)
        return path


__all__ = ["ProgressTracker"]
