from __future__ import annotations

import pytest

from app.crawler import run
from app.crawler.errors import BrowserCrashedError, FatalStartupError
from app.crawler.healthcheck import HealthResult


class _Orchestrator:
    error: BaseException | None = None
    calls: list[tuple] = []

    def run_historical(self, start_year, end_year, workers):
        _Orchestrator.calls.append(("historical", start_year, end_year, workers))
        if self.error is not None:
            raise self.error

    def run_nightly(self, workers):
        _Orchestrator.calls.append(("nightly", workers))
        if self.error is not None:
            raise self.error


@pytest.fixture
def orchestrator(monkeypatch: pytest.MonkeyPatch) -> type[_Orchestrator]:
    _Orchestrator.error = None
    _Orchestrator.calls = []
    monkeypatch.setattr(run, "CrawlOrchestrator", _Orchestrator)
    return _Orchestrator


def test_historical_arguments_reach_orchestrator(orchestrator) -> None:
    assert run._cli_entrypoint(["historical", "--start-year", "2015", "--end-year", "2020", "--workers", "3"]) == 0
    assert orchestrator.calls == [("historical", 2015, 2020, 3)]


def test_nightly_default_workers(orchestrator) -> None:
    assert run._cli_entrypoint(["nightly"]) == 0
    assert orchestrator.calls == [("nightly", run.config.NIGHTLY_MAX_WORKERS)]


@pytest.mark.parametrize(
    "error, code",
    [
        (FatalStartupError("start year 2024 is after end year 2010."), 2),
        (BrowserCrashedError("Target closed"), 1),
        (KeyboardInterrupt(), 1),
    ],
)
def test_exit_codes(orchestrator, error, code) -> None:
    orchestrator.error = error
    assert run._cli_entrypoint(["nightly"]) == code


def test_health_command_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    results = iter([HealthResult(ok=True, checks={}), HealthResult(ok=False, checks={"source": {"ok": False}})])
    monkeypatch.setattr(run, "run_health_checks", lambda entrypoint: next(results))

    assert run._cli_entrypoint(["health"]) == 0
    assert run._cli_entrypoint(["health"]) == 1


def test_stats_command_delegates(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[str]] = []
    monkeypatch.setattr(run.run_summary_cli, "main", lambda argv: seen.append(argv) or 0)

    assert run._cli_entrypoint(["stats", "--last-run"]) == 0
    assert seen == [["--last-run"]]
