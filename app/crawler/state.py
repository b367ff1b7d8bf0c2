"""Durable crash-recovery snapshot of discovered-but-unfinished work.

The snapshot is a single JSON document rewritten in full on every update via
a temp file and rename, so a reader always sees either the previous or the
new version. It holds the pending case list, the processed-document keys
(``case_number:document_name``) and the listing pages already walked.
"""
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from . import config
from .logging_utils import _crawler_event
from .models import CaseRecord, processed_key
from .utils import log_line, now_iso, write_json_atomic

SNAPSHOT_VERSION = 1


@dataclass
class CheckpointSnapshot:
    cases: list[CaseRecord] = field(default_factory=list)
    processed: set[str] = field(default_factory=set)
    completed_pages: set[str] = field(default_factory=set)
    saved_at: Optional[str] = None
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "saved_at": self.saved_at,
            "cases": [case.to_dict() for case in self.cases],
            "processed_documents": sorted(self.processed),
            "completed_pages": sorted(self.completed_pages),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckpointSnapshot":
        cases = [
            CaseRecord.from_dict(item)
            for item in data.get("cases") or []
            if isinstance(item, dict) and item.get("case_number")
        ]
        return cls(
            cases=cases,
            processed={str(key) for key in data.get("processed_documents") or []},
            completed_pages={str(key) for key in data.get("completed_pages") or []},
            saved_at=data.get("saved_at"),
            version=int(data.get("version") or 0),
        )


class CheckpointStore:
    """Thread-safe owner of the checkpoint file.

    With ``enabled=False`` (nightly runs) the store tracks state in memory
    only and never touches disk.
    """

    def __init__(self, path: Path | None = None, *, enabled: bool = True) -> None:
        self.path = Path(path or config.CHECKPOINT_FILE)
        self.enabled = enabled
        self._snapshot = CheckpointSnapshot()
        self._finished_cases: set[str] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def load_snapshot(self) -> Optional[CheckpointSnapshot]:
        """Load and adopt the snapshot on disk, or return ``None``."""

        if not self.enabled or not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_line(f"[CHECKPOINT] Failed to read checkpoint {self.path}: {exc}")
            return None
        if not isinstance(data, dict):
            return None

        snapshot = CheckpointSnapshot.from_dict(data)
        if snapshot.version != SNAPSHOT_VERSION:
            log_line(
                f"[CHECKPOINT] Ignoring checkpoint version {snapshot.version} "
                f"(expected {SNAPSHOT_VERSION})"
            )
            return None

        with self._lock:
            self._snapshot = snapshot
        _crawler_event(
            "checkpoint",
            step="loaded",
            cases=len(snapshot.cases),
            processed=len(snapshot.processed),
            saved_at=snapshot.saved_at,
        )
        return snapshot

    def is_processed(self, case_number: str, document_name: str) -> bool:
        with self._lock:
            return processed_key(case_number, document_name) in self._snapshot.processed

    def is_page_completed(self, page_key: str) -> bool:
        with self._lock:
            return page_key in self._snapshot.completed_pages

    def pending_cases(self) -> list[CaseRecord]:
        with self._lock:
            return list(self._snapshot.cases)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def save_cases_snapshot(self, cases: Iterable[CaseRecord]) -> None:
        with self._lock:
            self._snapshot.cases = [
                case for case in cases if case.case_number not in self._finished_cases
            ]
            self._write_locked(reason="cases")

    def mark_document_processed(self, case_number: str, document_name: str) -> None:
        with self._lock:
            self._snapshot.processed.add(processed_key(case_number, document_name))
            self._write_locked(reason="document")

    def mark_page_completed(self, page_key: str) -> None:
        with self._lock:
            self._snapshot.completed_pages.add(page_key)
            self._write_locked(reason="page")

    def remove_case(self, case_number: str) -> None:
        """Drop a case whose documents have all reached a terminal state."""

        with self._lock:
            self._finished_cases.add(case_number)
            before = len(self._snapshot.cases)
            self._snapshot.cases = [
                case for case in self._snapshot.cases if case.case_number != case_number
            ]
            if len(self._snapshot.cases) != before:
                self._write_locked(reason="case_complete")

    def forget_pages(self) -> None:
        """Drop the walked-page markers so the next run reads every listing again."""

        with self._lock:
            dropped = len(self._snapshot.completed_pages)
            self._snapshot.completed_pages = set()
            self._write_locked(reason="pages_reset")
        _crawler_event("checkpoint", step="pages_reset", dropped=dropped)

    def flush(self) -> None:
        with self._lock:
            self._write_locked(reason="flush")

    def clear(self) -> None:
        """Delete the checkpoint file and reset in-memory state."""

        with self._lock:
            self._snapshot = CheckpointSnapshot()
            if not self.enabled:
                return
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
        _crawler_event("checkpoint", step="cleared", path=str(self.path))

    def _write_locked(self, *, reason: str) -> None:
        if not self.enabled:
            return
        self._snapshot.saved_at = now_iso()
        write_json_atomic(self.path, self._snapshot.to_dict())
        _crawler_event(
            "checkpoint",
            step="saved",
            reason=reason,
            cases=len(self._snapshot.cases),
            processed=len(self._snapshot.processed),
        )


__all__ = ["CheckpointSnapshot", "CheckpointStore", "SNAPSHOT_VERSION"]
