"""Case discovery over the repository's listing pages.

The producer walks every listing source page by page, opens each unseen case,
keeps it only when its filing date falls inside the configured year window,
and hands accepted cases to the work queue as they are found. Per-page and
per-case failures are logged and counted; only a dead browser stops it, and
then only after the cases found so far are checkpointed.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Iterable, Optional

from . import config
from .errors import (
    BrowserCrashedError,
    DiscoveryPageError,
    PersistenceFatalError,
    TransientNetworkError,
)
from .logging_utils import _crawler_event
from .models import CaseBundle, CaseRecord
from .sources import ListingSource, page_key


class DiscoveryMode(str, Enum):
    # Backfill: skip cases already in the store, enqueue and checkpoint.
    HISTORICAL = "historical"
    # Incremental: revisit known cases, enqueue only when they grew.
    NIGHTLY = "nightly"
    # Read-only: collect accepted case numbers, no queue or checkpoint.
    VERIFY = "verify"


@dataclass
class DiscoveryStats:
    pages_visited: int = 0
    cases_seen: int = 0
    accepted: int = 0
    skipped_known: int = 0
    skipped_no_date: int = 0
    skipped_out_of_range: int = 0
    page_errors: int = 0
    case_errors: int = 0


@dataclass
class DiscoveryResult:
    cases: list[CaseRecord] = field(default_factory=list)
    stats: DiscoveryStats = field(default_factory=DiscoveryStats)


def _year_window(start_year: int, end_year: int) -> tuple[date, date]:
    return date(start_year, 1, 1), date(end_year, 12, 31)


class DiscoveryProducer:
    def __init__(
        self,
        source: Any,
        *,
        mode: DiscoveryMode,
        start_year: int | None = None,
        end_year: int | None = None,
        queue: Any = None,
        checkpoint: Any = None,
        gateway: Any = None,
        seed_cases: Iterable[CaseRecord] = (),
    ) -> None:
        self.source = source
        self.mode = mode
        self.window_start, self.window_end = _year_window(
            start_year or config.START_YEAR, end_year or config.END_YEAR
        )
        self.queue = queue if mode is not DiscoveryMode.VERIFY else None
        self.checkpoint = checkpoint if mode is DiscoveryMode.HISTORICAL else None
        self.gateway = gateway
        self.result = DiscoveryResult(cases=list(seed_cases))
        self._seen: set[str] = {case.case_number for case in self.result.cases}
        self._known: set[str] = set()
        self._stop = threading.Event()

    @property
    def stats(self) -> DiscoveryStats:
        return self.result.stats

    def stop(self) -> None:
        """Ask the walk to end after the case it is reading."""

        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self, listing_page: Any, detail_page: Any) -> DiscoveryResult:
        """Walk every listing and return the accepted cases.

        ``listing_page`` stays on the listing grid while ``detail_page``
        visits case pages, so paging position survives case reads.
        """

        if self.gateway is not None and self.mode is not DiscoveryMode.VERIFY:
            self._known = self._load_known()

        _crawler_event(
            "discovery",
            step="start",
            mode=self.mode.value,
            window_start=self.window_start.isoformat(),
            window_end=self.window_end.isoformat(),
            known=len(self._known),
            seeded=len(self._seen),
        )
        try:
            for listing in self.source.listings:
                if self.stopped:
                    break
                self._walk_listing(listing_page, detail_page, listing)
        except BrowserCrashedError as exc:
            _crawler_event("error", phase="discovery", step="fatal", error=str(exc), accepted=self.stats.accepted)
            self._save_snapshot(reason="fatal")
            raise
        finally:
            if self.queue is not None:
                self.queue.mark_discovery_complete()

        self._save_snapshot(reason="complete")
        _crawler_event("discovery", step="complete", mode=self.mode.value, **vars(self.stats))
        return self.result

    # ------------------------------------------------------------------
    # Listing walk
    # ------------------------------------------------------------------

    def _walk_listing(self, listing_page: Any, detail_page: Any, listing: ListingSource) -> None:
        try:
            self.source.open_listing(listing_page, listing)
        except (TransientNetworkError, DiscoveryPageError) as exc:
            self.stats.page_errors += 1
            _crawler_event(
                "error",
                phase="discovery",
                step="listing_open_failed",
                listing=listing.utility_type,
                error=str(exc),
            )
            return

        previous_numbers: Optional[tuple[str, ...]] = None
        for page_number in range(1, listing.max_pages + 1):
            if self.stopped:
                return
            if not self.source.goto_listing_page(listing_page, listing, page_number):
                break
            key = page_key(listing, page_number)
            if self.checkpoint is not None and self.checkpoint.is_page_completed(key):
                continue

            try:
                rows = self.source.read_listing_cases(listing_page, listing)
            except (TransientNetworkError, DiscoveryPageError) as exc:
                self.stats.page_errors += 1
                _crawler_event(
                    "error",
                    phase="discovery",
                    step="listing_page_failed",
                    listing=listing.utility_type,
                    page=page_number,
                    error=str(exc),
                )
                continue

            numbers = tuple(row.case_number for row in rows)
            if not rows or numbers == previous_numbers:
                break
            previous_numbers = numbers
            self.stats.pages_visited += 1

            for row in rows:
                if self.stopped:
                    return
                self._consider_case(detail_page, row)

            if self.checkpoint is not None:
                # Cases first, so a walked page never hides a case missing from the snapshot.
                self._save_snapshot(reason="page")
                self.checkpoint.mark_page_completed(key)

    def _consider_case(self, detail_page: Any, row: CaseRecord) -> None:
        if row.case_number in self._seen:
            return
        self._seen.add(row.case_number)
        self.stats.cases_seen += 1

        known = row.case_number in self._known
        if known and self.mode is DiscoveryMode.HISTORICAL:
            self.stats.skipped_known += 1
            return

        try:
            metadata = self.source.read_case_metadata(detail_page, row)
        except (TransientNetworkError, DiscoveryPageError) as exc:
            self._case_error(row, "metadata", exc)
            return

        if metadata is None:
            self.stats.skipped_no_date += 1
            return
        if not self.window_start <= metadata.date_filed <= self.window_end:
            self.stats.skipped_out_of_range += 1
            return

        case = replace(
            row,
            date_filed=metadata.date_filed.isoformat(),
            case_type=metadata.case_type or row.case_type,
            description=row.description or metadata.description,
        )

        if self.mode is DiscoveryMode.VERIFY:
            self._accept(case)
            return

        try:
            candidates = self.source.list_documents(detail_page, case)
        except (TransientNetworkError, DiscoveryPageError) as exc:
            self._case_error(case, "documents", exc)
            return

        if known and self.gateway is not None:
            try:
                stored = self.gateway.existing_document_names(case.case_number)
            except PersistenceFatalError as exc:
                self._case_error(case, "stored_names", exc)
                return
            if not any(candidate.name not in stored for candidate in candidates):
                self.stats.skipped_known += 1
                return

        self._accept(case)
        if self.queue is not None:
            try:
                self.queue.enqueue_discovered_case(CaseBundle(case=case, candidates=candidates))
            except PersistenceFatalError as exc:
                # Still accepted, so the snapshot carries it into the next run.
                self._case_error(case, "enqueue", exc)

        accepted = self.stats.accepted
        if accepted == 1 or accepted % config.CHECKPOINT_EVERY_ACCEPTED == 0:
            self._save_snapshot(reason="accepted")

    def _load_known(self) -> set[str]:
        try:
            return self.gateway.known_case_numbers()
        except PersistenceFatalError as exc:
            # Treat every case as new; the workers still check the store per document.
            _crawler_event("error", phase="discovery", step="known_cases_failed", error=str(exc))
            return set()

    def _accept(self, case: CaseRecord) -> None:
        self.result.cases.append(case)
        self.stats.accepted += 1
        _crawler_event(
            "discovery",
            step="accepted",
            case_number=case.case_number,
            date_filed=case.date_filed,
            accepted=self.stats.accepted,
        )

    def _case_error(self, case: CaseRecord, step: str, exc: Exception) -> None:
        self.stats.case_errors += 1
        _crawler_event(
            "error",
            phase="discovery",
            step=f"case_{step}_failed",
            case_number=case.case_number,
            error=str(exc),
        )

    def _save_snapshot(self, *, reason: str) -> None:
        if self.checkpoint is None:
            return
        self.checkpoint.save_cases_snapshot(self.result.cases)
        _crawler_event("discovery", step="snapshot", reason=reason, cases=len(self.result.cases))


__all__ = ["DiscoveryMode", "DiscoveryProducer", "DiscoveryResult", "DiscoveryStats"]
