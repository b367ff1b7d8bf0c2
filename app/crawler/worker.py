"""Long-lived extraction worker driven by an explicit state machine."""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

from .errors import (
    BrowserCrashedError,
    CrawlerError,
    ExtractionError,
    NoPagesError,
    PersistenceFatalError,
    ZeroContentError,
)
from .extraction import clean_extracted_text
from .logging_utils import _crawler_event
from .models import ExtractionResult, UploadResult, WorkUnit


class WorkerState(str, Enum):
    ACQUIRE_WORK = "acquire_work"
    EXTRACT = "extract"
    PERSIST = "persist"
    RETRY_DECISION = "retry_decision"
    CHECKPOINT = "checkpoint"
    IDLE = "idle"
    DONE = "done"


class Worker:
    """Pull units from the queue until it reports no more work.

    The browser session is opened once when the worker starts and closed by
    the session's context manager whichever way the loop exits.
    """

    def __init__(
        self,
        worker_id: int,
        *,
        queue: Any,
        engine: Any,
        gateway: Any,
        ledger: Any,
        checkpoint: Any,
        progress: Any,
        session_factory: Callable[[str], Any],
    ) -> None:
        self.worker_id = worker_id
        self.label = f"worker-{worker_id}"
        self.queue = queue
        self.engine = engine
        self.gateway = gateway
        self.ledger = ledger
        self.checkpoint = checkpoint
        self.progress = progress
        self.session_factory = session_factory
        self.state = WorkerState.IDLE
        self.processed = 0

    def _transition(self, state: WorkerState) -> WorkerState:
        self.state = state
        return state

    def run(self) -> int:
        """Run the state machine; return the number of units handled."""

        with self.session_factory(self.label) as session:
            self._loop(session.page)
        _crawler_event("worker", worker=self.label, step="done", processed=self.processed)
        return self.processed

    def _loop(self, page: Any) -> None:
        state = self._transition(WorkerState.ACQUIRE_WORK)
        unit: Optional[WorkUnit] = None
        extracted: Optional[ExtractionResult] = None
        upload: Optional[UploadResult] = None
        error: Optional[CrawlerError] = None

        while state is not WorkerState.DONE:
            if state is WorkerState.ACQUIRE_WORK:
                self._transition(WorkerState.IDLE)
                unit = self.queue.next_unit()
                if unit is None:
                    state = self._transition(WorkerState.DONE)
                    continue
                self.processed += 1
                try:
                    stored = self._already_stored(unit)
                except PersistenceFatalError as exc:
                    error = exc
                    state = self._transition(WorkerState.RETRY_DECISION)
                    continue
                if stored:
                    self.progress.record_duplicate()
                    self.queue.task_done(unit)
                    state = self._transition(WorkerState.ACQUIRE_WORK)
                    continue
                state = self._transition(WorkerState.EXTRACT)

            elif state is WorkerState.EXTRACT:
                try:
                    extracted = self.engine.extract(page, unit)
                    state = self._transition(WorkerState.PERSIST)
                except NoPagesError as exc:
                    _crawler_event(
                        "extract",
                        worker=self.label,
                        step="skipped_no_pages",
                        document=unit.document.name,
                        error=str(exc),
                    )
                    self.progress.record_empty()
                    self.queue.task_done(unit)
                    state = self._transition(WorkerState.ACQUIRE_WORK)
                except ExtractionError as exc:
                    error = exc
                    state = self._transition(WorkerState.RETRY_DECISION)
                except BrowserCrashedError as exc:
                    self._abandon(unit, exc)
                    raise

            elif state is WorkerState.PERSIST:
                text = clean_extracted_text(extracted.text)
                try:
                    if not text:
                        raise ZeroContentError(f"only viewer chrome extracted from {unit.document.name}")
                    upload = self.gateway.upload_document(unit.case, unit.document, text)
                    state = self._transition(WorkerState.CHECKPOINT)
                except (PersistenceFatalError, ZeroContentError) as exc:
                    error = exc
                    state = self._transition(WorkerState.RETRY_DECISION)

            elif state is WorkerState.CHECKPOINT:
                if upload.name_collision:
                    # Stored under another URL; this candidate is not the document on record.
                    _crawler_event(
                        "worker",
                        worker=self.label,
                        step="name_collision",
                        document=unit.document.name,
                        url=unit.document.url,
                    )
                    self.progress.record_name_collision()
                    self.queue.task_done(unit)
                    state = self._transition(WorkerState.ACQUIRE_WORK)
                    continue
                self.checkpoint.mark_document_processed(unit.case.case_number, unit.document.name)
                if upload.duplicate:
                    self.progress.record_duplicate()
                else:
                    self.progress.record_new_document(upload)
                self.queue.task_done(unit)
                state = self._transition(WorkerState.ACQUIRE_WORK)

            elif state is WorkerState.RETRY_DECISION:
                self._decide_retry(unit, error)
                error = None
                state = self._transition(WorkerState.ACQUIRE_WORK)

    def _already_stored(self, unit: WorkUnit) -> bool:
        """Consult the store before extracting; a checkpoint marker alone is not enough."""

        marked = self.checkpoint.is_processed(unit.case.case_number, unit.document.name)
        stored = self.gateway.document_exists(unit.document.url)
        if stored:
            _crawler_event(
                "worker",
                worker=self.label,
                step="skip_stored",
                document=unit.document.name,
                checkpoint_marker=marked,
            )
        return stored

    def _decide_retry(self, unit: WorkUnit, error: CrawlerError) -> None:
        attempts = self.ledger.record_failure(
            unit.unit_id,
            error=str(error),
            error_code=error.error_code,
            document_name=unit.document.name,
            case_number=unit.case.case_number,
            document_url=unit.document.url,
        )
        _crawler_event(
            "error",
            phase="worker",
            worker=self.label,
            document=unit.document.name,
            error_code=error.error_code,
            attempt=attempts,
            error=str(error),
        )
        if self.ledger.should_blacklist(unit.unit_id):
            self.progress.record_blacklisted()
            self.queue.task_done(unit)
        elif error.retryable and self.ledger.should_retry(unit.unit_id):
            self.progress.record_retry()
            self.queue.requeue(unit)
        else:
            self.progress.record_error()
            self.queue.task_done(unit)

    def _abandon(self, unit: WorkUnit, exc: Exception) -> None:
        """Hand the in-flight unit back before the worker dies with its browser."""

        _crawler_event(
            "error",
            phase="worker",
            worker=self.label,
            step="browser_crashed",
            document=unit.document.name,
            error=str(exc),
        )
        self.queue.requeue(unit)


__all__ = ["Worker", "WorkerState"]
