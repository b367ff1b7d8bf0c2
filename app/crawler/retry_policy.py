from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import config
from .logging_utils import _crawler_event
from .utils import append_json_line, now_iso

VIEWER_TEXT_LAYER = "text_layer"
VIEWER_EMBEDDED = "embedded_viewer"
IFRAME_ACCESS = "iframe_access"


@dataclass(frozen=True)
class TimingTier:
    label: str
    wait_ms: int

    @property
    def wait_seconds(self) -> float:
        return self.wait_ms / 1000.0

    @property
    def page_retries(self) -> int:
        """Per-page retry budget: the fastest tier gives up sooner."""

        return 1 if self.label == "fast" else 2


def _tiers(table: tuple[tuple[str, int], ...]) -> tuple[TimingTier, ...]:
    return tuple(TimingTier(label=label, wait_ms=wait) for label, wait in table)


def timing_tables() -> dict[str, tuple[TimingTier, ...]]:
    return {
        VIEWER_TEXT_LAYER: _tiers(config.TEXT_LAYER_TIERS),
        VIEWER_EMBEDDED: _tiers(config.EMBEDDED_VIEWER_TIERS),
        IFRAME_ACCESS: _tiers(config.IFRAME_ACCESS_TIERS),
    }


@dataclass
class FailureRecord:
    document_name: str
    case_number: str
    document_url: str
    attempts: list[dict[str, Any]] = field(default_factory=list)


class RetryLedger:
    """Per-document failure history shared by every worker in a run.

    The ledger decides whether a failed document is re-enqueued or
    blacklisted, and which timing tier the next attempt uses. Blacklisted
    documents are appended once to a JSON-lines log for manual review.
    """

    def __init__(
        self,
        *,
        max_attempts: int | None = None,
        blacklist_path: Path | None = None,
        tables: dict[str, tuple[TimingTier, ...]] | None = None,
    ) -> None:
        self.max_attempts = max_attempts or config.MAX_DOCUMENT_ATTEMPTS
        self.blacklist_path = Path(blacklist_path or config.BLACKLIST_LOG)
        self.tables = tables or timing_tables()
        self._records: dict[str, FailureRecord] = {}
        self._blacklisted: set[str] = set()
        self._lock = threading.Lock()

    def attempts(self, unit_id: str) -> int:
        with self._lock:
            record = self._records.get(unit_id)
            return len(record.attempts) if record else 0

    def record_failure(
        self,
        unit_id: str,
        *,
        error: str,
        error_code: str | None = None,
        document_name: str = "",
        case_number: str = "",
        document_url: str = "",
    ) -> int:
        """Append a failed attempt for ``unit_id`` and return the attempt count."""

        with self._lock:
            record = self._records.get(unit_id)
            if record is None:
                record = FailureRecord(
                    document_name=document_name,
                    case_number=case_number,
                    document_url=document_url,
                )
                self._records[unit_id] = record
            record.attempts.append(
                {
                    "timestamp": now_iso(),
                    "error": error,
                    "error_code": error_code,
                }
            )
            return len(record.attempts)

    def should_retry(self, unit_id: str) -> bool:
        attempts = self.attempts(unit_id)
        will_retry = attempts < self.max_attempts and not self.is_blacklisted(unit_id)
        _crawler_event(
            "state",
            phase="retry_decision",
            kind="retryable" if will_retry else "capped",
            unit_id=unit_id,
            attempt=attempts,
            max_attempts=self.max_attempts,
            will_retry=will_retry,
        )
        return will_retry

    def should_blacklist(self, unit_id: str) -> bool:
        """Return ``True`` once the retry budget is spent.

        The first positive answer for a unit writes its blacklist entry; later
        calls keep answering ``True`` without writing again.
        """

        with self._lock:
            record = self._records.get(unit_id)
            if record is None or len(record.attempts) < self.max_attempts:
                return False
            if unit_id in self._blacklisted:
                return True
            self._blacklisted.add(unit_id)
            entry = {
                "timestamp": now_iso(),
                "queue_id": unit_id,
                "document_name": record.document_name,
                "case_number": record.case_number,
                "document_url": record.document_url,
                "attempts": len(record.attempts),
                "errors": [attempt["error"] for attempt in record.attempts],
                "last_error": record.attempts[-1]["error"],
                "attempt_history": list(record.attempts),
            }
            append_json_line(self.blacklist_path, entry)

        _crawler_event(
            "blacklist",
            unit_id=unit_id,
            document=record.document_name,
            case_number=record.case_number,
            attempts=entry["attempts"],
            last_error=entry["last_error"],
        )
        return True

    def is_blacklisted(self, unit_id: str) -> bool:
        with self._lock:
            return unit_id in self._blacklisted

    def next_attempt_timing(self, unit_id: str, viewer_kind: str) -> TimingTier:
        """Pick the tier for the next attempt, escalating with failures."""

        table = self.tables.get(viewer_kind)
        if not table:
            raise KeyError(f"no timing table for viewer kind {viewer_kind!r}")
        index = min(self.attempts(unit_id), len(table) - 1)
        return table[index]

    def blacklisted_count(self) -> int:
        with self._lock:
            return len(self._blacklisted)

    def failure_record(self, unit_id: str) -> Optional[FailureRecord]:
        with self._lock:
            return self._records.get(unit_id)


__all__ = [
    "FailureRecord",
    "IFRAME_ACCESS",
    "RetryLedger",
    "TimingTier",
    "VIEWER_EMBEDDED",
    "VIEWER_TEXT_LAYER",
    "timing_tables",
]
