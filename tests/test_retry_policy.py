from __future__ import annotations

from pathlib import Path

import pytest

from app.crawler import retry_policy
from app.crawler.retry_policy import (
    IFRAME_ACCESS,
    VIEWER_EMBEDDED,
    VIEWER_TEXT_LAYER,
    RetryLedger,
)
from app.crawler.utils import load_json_lines
from tests.crawler_fakes import record_events


def _fail(ledger: RetryLedger, unit_id: str, error: str = "timeout") -> int:
    return ledger.record_failure(
        unit_id,
        error=error,
        error_code="navigation_timeout",
        document_name="DIRECT SMITH.PDF",
        case_number="IPC-E-23-01",
        document_url="https://lf-puc.idaho.gov/ElectricCases/direct.pdf",
    )


@pytest.mark.parametrize("viewer_kind", [VIEWER_TEXT_LAYER, VIEWER_EMBEDDED, IFRAME_ACCESS])
def test_timing_escalates_across_three_failures(tmp_path: Path, viewer_kind: str) -> None:
    ledger = RetryLedger(max_attempts=3, blacklist_path=tmp_path / "blacklist.jsonl")

    waits = []
    for _ in range(3):
        waits.append(ledger.next_attempt_timing("unit-1", viewer_kind).wait_ms)
        _fail(ledger, "unit-1")

    assert waits == sorted(waits)
    assert waits[0] < waits[-1]
    # Past the table end the slowest tier is reused.
    assert ledger.next_attempt_timing("unit-1", viewer_kind).wait_ms == waits[-1]


def test_text_layer_tiers_match_configured_waits(tmp_path: Path) -> None:
    ledger = RetryLedger(max_attempts=3, blacklist_path=tmp_path / "blacklist.jsonl")

    tier = ledger.next_attempt_timing("unit-1", VIEWER_TEXT_LAYER)
    assert (tier.label, tier.wait_ms, tier.page_retries) == ("fast", 200, 1)

    _fail(ledger, "unit-1")
    tier = ledger.next_attempt_timing("unit-1", VIEWER_TEXT_LAYER)
    assert (tier.label, tier.wait_ms, tier.page_retries) == ("medium", 400, 2)
    assert tier.wait_seconds == pytest.approx(0.4)


def test_third_failure_blacklists_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "blacklist.jsonl"
    ledger = RetryLedger(max_attempts=3, blacklist_path=path)
    events = record_events(monkeypatch, retry_policy)

    _fail(ledger, "unit-1", "timeout one")
    assert ledger.should_blacklist("unit-1") is False
    assert ledger.should_retry("unit-1") is True
    _fail(ledger, "unit-1", "timeout two")
    assert ledger.should_blacklist("unit-1") is False
    assert _fail(ledger, "unit-1", "timeout three") == 3

    assert ledger.should_blacklist("unit-1") is True
    assert ledger.should_blacklist("unit-1") is True
    assert ledger.should_retry("unit-1") is False
    assert ledger.is_blacklisted("unit-1") is True
    assert ledger.blacklisted_count() == 1

    entries = load_json_lines(path)
    assert len(entries) == 1
    entry = entries[0]
    assert entry["queue_id"] == "unit-1"
    assert entry["attempts"] == 3
    assert entry["errors"] == ["timeout one", "timeout two", "timeout three"]
    assert entry["last_error"] == "timeout three"
    assert entry["case_number"] == "IPC-E-23-01"
    assert len(entry["attempt_history"]) == 3

    assert [label for label, _ in events].count("blacklist") == 1
    decisions = [fields for label, fields in events if label == "state"]
    assert decisions and all(fields["phase"] == "retry_decision" for fields in decisions)


def test_units_are_tracked_independently(tmp_path: Path) -> None:
    ledger = RetryLedger(max_attempts=2, blacklist_path=tmp_path / "blacklist.jsonl")

    _fail(ledger, "unit-a")
    _fail(ledger, "unit-a")
    _fail(ledger, "unit-b")

    assert ledger.should_blacklist("unit-a") is True
    assert ledger.should_blacklist("unit-b") is False
    assert ledger.attempts("unit-b") == 1
    assert ledger.failure_record("unit-c") is None


def test_unknown_viewer_kind_raises(tmp_path: Path) -> None:
    ledger = RetryLedger(blacklist_path=tmp_path / "blacklist.jsonl")

    with pytest.raises(KeyError):
        ledger.next_attempt_timing("unit-1", "flash_viewer")
