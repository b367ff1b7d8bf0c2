"""Two-level work queue bridging discovery and the worker pool.

Cases arrive as bundles in FIFO order. Workers drain one "current case"
sub-queue at a time; when it empties, the next worker to ask advances to
the next case. Every mutation happens under one ``threading.Condition`` so
"check, take, release" is atomic and idle workers sleep instead of spinning.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable, Iterable, Optional

from . import config
from .errors import PersistenceFatalError
from .logging_utils import _crawler_event
from .models import CaseBundle, CaseRecord, DocumentCandidate, WorkUnit


def prioritize(candidates: Iterable[DocumentCandidate]) -> list[DocumentCandidate]:
    """Company direct testimony first; source order breaks ties."""

    return sorted(candidates, key=lambda candidate: 0 if candidate.is_priority else 1)


def build_sub_queue(
    bundle: CaseBundle,
    *,
    stored_urls: set[str],
    stored_names: set[str],
) -> tuple[list[WorkUnit], dict[str, int]]:
    """Filter and order a case's candidates into work units.

    Drops candidates whose URL is already stored, whose name is already
    stored for the case, or whose name repeats an earlier candidate. A URL
    repeated under a different name stays queued; the persistence gateway
    reports it as a duplicate.
    """

    units: list[WorkUnit] = []
    queued_names: set[str] = set()
    skipped = {"stored_url": 0, "stored_name": 0, "queued_name": 0}

    for candidate in prioritize(bundle.candidates):
        if candidate.url in stored_urls:
            skipped["stored_url"] += 1
            continue
        if candidate.name in stored_names:
            skipped["stored_name"] += 1
            continue
        if candidate.name in queued_names:
            skipped["queued_name"] += 1
            continue
        queued_names.add(candidate.name)
        units.append(WorkUnit(case=bundle.case, document=candidate))
    return units, skipped


class WorkQueue:
    """Case FIFO plus the current case's document sub-queue."""

    def __init__(
        self,
        *,
        gateway: Any = None,
        checkpoint: Any = None,
        active_wait: float | None = None,
        drained_wait: float | None = None,
        poll_interval: float | None = None,
        on_case_complete: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.gateway = gateway
        self.checkpoint = checkpoint
        self.active_wait = config.QUEUE_ACTIVE_WAIT_SECONDS if active_wait is None else active_wait
        self.drained_wait = config.QUEUE_DRAINED_WAIT_SECONDS if drained_wait is None else drained_wait
        self.poll_interval = config.QUEUE_POLL_SECONDS if poll_interval is None else poll_interval
        self.on_case_complete = on_case_complete

        self._cond = threading.Condition()
        self._cases: deque[tuple[CaseRecord, list[WorkUnit]]] = deque()
        self._current: deque[WorkUnit] = deque()
        self._current_case: Optional[CaseRecord] = None
        self._outstanding: dict[str, int] = {}
        self._discovery_complete = False
        self._closed = False
        self._stored_urls: Optional[set[str]] = None

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _stored_url_index(self) -> set[str]:
        if self._stored_urls is None:
            self._stored_urls = self.gateway.existing_document_urls() if self.gateway else set()
        return self._stored_urls

    def build_sub_queue_for_case(
        self, bundle: CaseBundle, *, from_checkpoint: bool = False
    ) -> list[WorkUnit]:
        stored_names = (
            self.gateway.existing_document_names(bundle.case.case_number) if self.gateway else set()
        )
        units, skipped = build_sub_queue(
            bundle,
            stored_urls=self._stored_url_index(),
            stored_names=stored_names,
        )
        if from_checkpoint and self.checkpoint is not None:
            for unit in units:
                if self.checkpoint.is_processed(unit.case.case_number, unit.document.name):
                    # Marker without a stored row: the store wins, extract again.
                    _crawler_event(
                        "queue",
                        step="checkpoint_divergence",
                        case_number=unit.case.case_number,
                        document=unit.document.name,
                    )
        _crawler_event(
            "queue",
            step="sub_queue_built",
            case_number=bundle.case.case_number,
            candidates=len(bundle.candidates),
            queued=len(units),
            from_checkpoint=from_checkpoint,
            **skipped,
        )
        return units

    def enqueue_discovered_case(self, bundle: CaseBundle) -> int:
        units = self.build_sub_queue_for_case(bundle)
        self._push_case(bundle.case, units)
        return len(units)

    def enqueue_checkpointed_cases(self, bundles: Iterable[CaseBundle]) -> int:
        total = 0
        for bundle in bundles:
            try:
                units = self.build_sub_queue_for_case(bundle, from_checkpoint=True)
            except PersistenceFatalError as exc:
                # Left pending in the checkpoint for the next run.
                _crawler_event(
                    "error",
                    phase="queue",
                    step="replay_case_skipped",
                    case_number=bundle.case.case_number,
                    error=str(exc),
                )
                continue
            self._push_case(bundle.case, units)
            total += len(units)
        return total

    def _push_case(self, case: CaseRecord, units: list[WorkUnit]) -> None:
        if not units:
            self._notify_case_complete(case.case_number)
            return
        with self._cond:
            self._outstanding[case.case_number] = self._outstanding.get(case.case_number, 0) + len(units)
            self._cases.append((case, list(units)))
            self._cond.notify_all()

    def mark_discovery_complete(self) -> None:
        with self._cond:
            self._discovery_complete = True
            self._cond.notify_all()
        _crawler_event("queue", step="discovery_complete", pending=self.pending_units())

    @property
    def discovery_complete(self) -> bool:
        with self._cond:
            return self._discovery_complete

    def shutdown(self) -> None:
        """Release every waiting worker; further takes return ``None``."""

        with self._cond:
            self._closed = True
            self._discovery_complete = True
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _advance_locked(self) -> Optional[CaseRecord]:
        case, units = self._cases.popleft()
        self._current_case = case
        self._current.extend(units)
        _crawler_event("queue", step="case_advanced", case_number=case.case_number, documents=len(units))
        return case

    def _take_locked(self) -> Optional[WorkUnit]:
        while True:
            if self._current:
                return self._current.popleft()
            if not self._cases:
                return None
            self._advance_locked()

    def _wait_locked(self, ready: Callable[[], bool]) -> bool:
        """Block until ``ready()`` or the adaptive timeout runs out.

        Waits in ``active_wait`` windows while discovery is still running and
        gives up after ``drained_wait`` once it has completed.
        """

        started = time.monotonic()
        saw_complete = self._discovery_complete
        while True:
            if self._closed:
                return False
            if ready():
                return True
            if self._discovery_complete and not saw_complete:
                saw_complete = True
                started = time.monotonic()
            elapsed = time.monotonic() - started
            if self._discovery_complete:
                if elapsed >= self.drained_wait:
                    return False
                remaining = self.drained_wait - elapsed
            else:
                if elapsed >= self.active_wait:
                    _crawler_event("queue", step="waiting_for_discovery", waited=round(elapsed, 1))
                    started = time.monotonic()
                    remaining = self.active_wait
                else:
                    remaining = self.active_wait - elapsed
            self._cond.wait(timeout=max(0.001, min(self.poll_interval, remaining)))

    def dequeue_next_case(self) -> Optional[CaseRecord]:
        """Make the next case current, blocking per the adaptive wait policy.

        Returns ``None`` when no case arrived before the timeout with
        discovery complete.
        """

        with self._cond:
            if not self._wait_locked(lambda: bool(self._cases)):
                return None
            return self._advance_locked()

    def next_unit(self) -> Optional[WorkUnit]:
        """Take the next document unit, advancing cases as sub-queues drain."""

        with self._cond:
            if not self._wait_locked(lambda: bool(self._current) or bool(self._cases)):
                return None
            return self._take_locked()

    def requeue(self, unit: WorkUnit) -> None:
        """Put a failed unit back on its own case's queue."""

        case_number = unit.case.case_number
        with self._cond:
            if self._current_case is not None and self._current_case.case_number == case_number:
                self._current.append(unit)
            else:
                for case, units in self._cases:
                    if case.case_number == case_number:
                        units.append(unit)
                        break
                else:
                    self._cases.append((unit.case, [unit]))
            self._cond.notify_all()
        _crawler_event("queue", step="requeued", case_number=case_number, document=unit.document.name)

    def task_done(self, unit: WorkUnit) -> None:
        """Record that ``unit`` reached a terminal state."""

        case_number = unit.case.case_number
        finished = False
        with self._cond:
            remaining = self._outstanding.get(case_number, 0) - 1
            if remaining <= 0:
                self._outstanding.pop(case_number, None)
                finished = True
            else:
                self._outstanding[case_number] = remaining
        if finished:
            self._notify_case_complete(case_number)

    def _notify_case_complete(self, case_number: str) -> None:
        _crawler_event("queue", step="case_complete", case_number=case_number)
        if self.on_case_complete is not None:
            self.on_case_complete(case_number)

    def pending_units(self) -> int:
        with self._cond:
            return len(self._current) + sum(len(units) for _, units in self._cases)

    def outstanding_cases(self) -> int:
        with self._cond:
            return len(self._outstanding)


__all__ = ["WorkQueue", "build_sub_queue", "prioritize"]
