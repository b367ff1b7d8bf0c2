"""Crawl orchestration: discovery thread, worker pool, verification and CLI.

One discovery thread feeds the work queue while ``workers`` threads drain
it, each thread owning its own Playwright session for its whole life. The
historical backfill checkpoints as it goes and clears the checkpoint only
after a verification pass finds no case missing from the store; the nightly
crawl revisits open cases for new documents and keeps nothing on disk.
"""
from __future__ import annotations

import argparse
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from . import config, db, run_summary_cli
from .browser import BrowserSession
from .config_validation import validate_runtime_config
from .consistency import VerificationReport, verify_coverage
from .discovery import DiscoveryMode, DiscoveryProducer, DiscoveryStats
from .errors import (
    CrawlerError,
    DiscoveryPageError,
    FatalStartupError,
    TransientNetworkError,
)
from .extraction import ExtractionEngine
from .healthcheck import report as report_health, run_health_checks
from .logging_utils import _crawler_event
from .models import CaseBundle, CaseRecord
from .persistence import PersistenceGateway
from .retry_policy import RetryLedger
from .sources import PucCaseSource
from .state import CheckpointStore
from .telemetry import ProgressTracker
from .utils import disk_has_room, ensure_dirs, log_line, setup_run_logger
from .work_queue import WorkQueue
from .worker import Worker

SessionFactory = Callable[[str], Any]
EngineFactory = Callable[..., Any]


@dataclass
class CrawlReport:
    mode: str
    run_id: str
    summary: dict[str, int] = field(default_factory=dict)
    discovery: Optional[DiscoveryStats] = None
    verification: Optional[VerificationReport] = None
    summary_path: Optional[Path] = None
    replayed_cases: int = 0

    @property
    def ok(self) -> bool:
        return self.verification is None or self.verification.ok


class CrawlOrchestrator:
    """Wire the discovery producer, queue, workers and verification together.

    Collaborators are injectable so tests can substitute fake sources,
    sessions and extraction engines.
    """

    def __init__(
        self,
        *,
        source: Any = None,
        gateway: Optional[PersistenceGateway] = None,
        checkpoint: Optional[CheckpointStore] = None,
        ledger: Optional[RetryLedger] = None,
        session_factory: SessionFactory = BrowserSession,
        engine_factory: EngineFactory = ExtractionEngine,
        queue_options: Optional[dict[str, float]] = None,
    ) -> None:
        self.source = source if source is not None else PucCaseSource()
        self.gateway = gateway if gateway is not None else PersistenceGateway()
        self.checkpoint = checkpoint
        self.ledger = ledger
        self.session_factory = session_factory
        self.engine_factory = engine_factory
        self.queue_options = dict(queue_options or {})

    # ------------------------------------------------------------------
    # Public entrypoints
    # ------------------------------------------------------------------

    def run_historical(
        self,
        start_year: int | None = None,
        end_year: int | None = None,
        workers: int | None = None,
    ) -> CrawlReport:
        start = config.START_YEAR if start_year is None else start_year
        end = config.END_YEAR if end_year is None else end_year
        worker_count = config.MAX_WORKERS if workers is None else workers
        validate_runtime_config(
            "cli",
            mode=config.MODE_HISTORICAL,
            start_year=start,
            end_year=end,
            workers=worker_count,
        )
        self._prepare()

        checkpoint = self.checkpoint or CheckpointStore()
        snapshot = checkpoint.load_snapshot()
        replay = list(snapshot.cases) if snapshot is not None else []
        if replay:
            log_line(f"[RUN] Resuming from checkpoint with {len(replay)} pending case(s)")

        report, _ = self._crawl(
            mode=config.MODE_HISTORICAL,
            discovery_mode=DiscoveryMode.HISTORICAL,
            start_year=start,
            end_year=end,
            workers=worker_count,
            checkpoint=checkpoint,
            replay=replay,
        )

        report.verification = self._verify(start, end)
        if report.verification.ok:
            checkpoint.clear()
        else:
            log_line(
                f"[RUN] Verification found {len(report.verification.missing)} case(s) missing; "
                "keeping checkpoint for the next run"
            )
            checkpoint.forget_pages()
        report.summary_path = self._finalize(report)
        return report

    def run_nightly(self, workers: int | None = None) -> CrawlReport:
        worker_count = config.NIGHTLY_MAX_WORKERS if workers is None else workers
        end = config.nightly_end_year()
        validate_runtime_config(
            "nightly",
            mode=config.MODE_NIGHTLY,
            start_year=config.START_YEAR,
            end_year=end,
            workers=worker_count,
        )
        self._prepare()

        report, _ = self._crawl(
            mode=config.MODE_NIGHTLY,
            discovery_mode=DiscoveryMode.NIGHTLY,
            start_year=config.START_YEAR,
            end_year=end,
            workers=worker_count,
            checkpoint=self.checkpoint or CheckpointStore(enabled=False),
            replay=[],
        )
        report.summary_path = self._finalize(report)
        return report

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        ensure_dirs()
        if not disk_has_room(config.MIN_FREE_MB, config.DATA_DIR):
            raise FatalStartupError(
                f"less than {config.MIN_FREE_MB} MB free under {config.DATA_DIR}"
            )
        db.initialize_schema()

    def _crawl(
        self,
        *,
        mode: str,
        discovery_mode: DiscoveryMode,
        start_year: int,
        end_year: int,
        workers: int,
        checkpoint: CheckpointStore,
        replay: List[CaseRecord],
    ) -> tuple[CrawlReport, WorkQueue]:
        progress = ProgressTracker(mode)
        ledger = self.ledger or RetryLedger()
        queue = WorkQueue(
            gateway=self.gateway,
            checkpoint=checkpoint,
            on_case_complete=checkpoint.remove_case,
            **self.queue_options,
        )
        producer = DiscoveryProducer(
            self.source,
            mode=discovery_mode,
            start_year=start_year,
            end_year=end_year,
            queue=queue,
            checkpoint=checkpoint,
            gateway=self.gateway,
            seed_cases=replay,
        )
        report = CrawlReport(mode=mode, run_id=progress.run_id, replayed_cases=len(replay))
        self._progress = progress

        _crawler_event(
            "run",
            step="start",
            mode=mode,
            run_id=progress.run_id,
            workers=workers,
            start_year=start_year,
            end_year=end_year,
            replay=len(replay),
        )

        pool = ThreadPoolExecutor(max_workers=workers + 1, thread_name_prefix="crawler")
        interrupted = False
        try:
            futures: List[Future] = [
                pool.submit(self._discover, producer, queue, replay)
            ]
            for worker_id in range(1, workers + 1):
                worker = Worker(
                    worker_id,
                    queue=queue,
                    engine=self.engine_factory(ledger, worker_label=f"worker-{worker_id}"),
                    gateway=self.gateway,
                    ledger=ledger,
                    checkpoint=checkpoint,
                    progress=progress,
                    session_factory=self.session_factory,
                )
                futures.append(pool.submit(worker.run))

            try:
                wait(futures)
            except KeyboardInterrupt:
                interrupted = True
                log_line("[RUN] Interrupted; writing checkpoint and releasing workers")
                producer.stop()
                queue.shutdown()
                checkpoint.flush()
                raise
        finally:
            # In-flight units finish on their own threads; their sessions still close.
            pool.shutdown(wait=not interrupted, cancel_futures=interrupted)

        progress.force_update()
        report.summary = progress.snapshot()
        report.summary["blacklisted"] = ledger.blacklisted_count()
        report.discovery = producer.stats

        failures = [future.exception() for future in futures if future.exception() is not None]
        if failures:
            checkpoint.flush()
            for exc in failures:
                _crawler_event("error", phase="run", mode=mode, error=str(exc), kind=type(exc).__name__)
            report.summary_path = self._finalize(report, status="failed", error=str(failures[0]))
            raise failures[0]

        _crawler_event("run", step="pool_complete", mode=mode, **report.summary)
        return report, queue

    def _discover(
        self, producer: DiscoveryProducer, queue: WorkQueue, replay: List[CaseRecord]
    ) -> DiscoveryStats:
        try:
            with self.session_factory("discovery") as session:
                detail_page = session.new_page()
                if replay:
                    count = queue.enqueue_checkpointed_cases(self._replay_bundles(detail_page, replay))
                    _crawler_event("run", step="checkpoint_replayed", cases=len(replay), documents=count)
                producer.run(session.page, detail_page)
        finally:
            queue.mark_discovery_complete()
        return producer.stats

    def _replay_bundles(self, page: Any, cases: List[CaseRecord]) -> Iterator[CaseBundle]:
        """List documents afresh for each checkpointed case."""

        for case in cases:
            try:
                candidates = self.source.list_documents(page, case)
            except (TransientNetworkError, DiscoveryPageError) as exc:
                _crawler_event(
                    "error",
                    phase="run",
                    step="replay_case_failed",
                    case_number=case.case_number,
                    error=str(exc),
                )
                continue
            yield CaseBundle(case=case, candidates=candidates)

    def _verify(self, start_year: int, end_year: int) -> VerificationReport:
        with self.session_factory("verify") as session:
            return verify_coverage(
                self.source,
                session.page,
                session.new_page(),
                self.gateway,
                start_year=start_year,
                end_year=end_year,
            )

    def _finalize(self, report: CrawlReport, *, status: str = "completed", error: str | None = None) -> Path:
        extra: dict[str, Any] = {"status": status, "replayed_cases": report.replayed_cases}
        if report.discovery is not None:
            extra["discovery"] = vars(report.discovery)
        if report.verification is not None:
            extra["verification"] = report.verification.to_dict()
        if error:
            extra["error"] = error
        path = self._progress.finalize(extra)
        log_line(f"[RUN] {report.mode} run {report.run_id} {status}; summary at {path}")
        return path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl and ingest Idaho PUC case documents")
    sub = parser.add_subparsers(dest="command", required=True)

    historical = sub.add_parser("historical", help="Backfill cases filed within a year range")
    historical.add_argument("--start-year", type=int, default=config.START_YEAR)
    historical.add_argument("--end-year", type=int, default=config.END_YEAR)
    historical.add_argument("--workers", type=int, default=config.MAX_WORKERS)

    nightly = sub.add_parser("nightly", help="Pick up new documents on open cases")
    nightly.add_argument("--workers", type=int, default=config.NIGHTLY_MAX_WORKERS)

    sub.add_parser("health", help="Check store, credentials and source without crawling")

    stats = sub.add_parser("stats", help="Print document store statistics")
    stats.add_argument("--last-run", action="store_true")
    return parser


def _cli_entrypoint(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "health":
        result = run_health_checks(entrypoint="health")
        report_health(result)
        return 0 if result.ok else 1
    if args.command == "stats":
        return run_summary_cli.main(["--last-run"] if args.last_run else [])

    ensure_dirs()
    setup_run_logger()
    orchestrator = CrawlOrchestrator()
    try:
        if args.command == "historical":
            orchestrator.run_historical(args.start_year, args.end_year, args.workers)
        else:
            orchestrator.run_nightly(args.workers)
    except FatalStartupError as exc:
        log_line(f"[RUN] Fatal startup error: {exc}")
        return 2
    except CrawlerError as exc:
        log_line(f"[RUN] Crawl aborted: {exc}")
        return 1
    except KeyboardInterrupt:
        log_line("[RUN] Crawl interrupted; checkpoint saved")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(_cli_entrypoint())

__all__ = ["CrawlOrchestrator", "CrawlReport", "_cli_entrypoint"]
