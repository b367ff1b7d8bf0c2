from __future__ import annotations

import json
from pathlib import Path

from app.crawler import config
from app.crawler.state import SNAPSHOT_VERSION, CheckpointStore
from tests.crawler_fakes import make_case


def test_snapshot_round_trip_through_file(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)
    cases = [make_case("IPC-E-23-01"), make_case("AVU-E-23-02")]

    store.save_cases_snapshot(cases)
    store.mark_document_processed("IPC-E-23-01", "DIRECT SMITH.PDF")
    store.mark_page_completed("electric:open:1")

    reloaded = CheckpointStore(path)
    snapshot = reloaded.load_snapshot()

    assert snapshot is not None
    assert [case.case_number for case in snapshot.cases] == ["IPC-E-23-01", "AVU-E-23-02"]
    assert snapshot.cases[0] == cases[0]
    assert reloaded.is_processed("IPC-E-23-01", "DIRECT SMITH.PDF") is True
    assert reloaded.is_processed("IPC-E-23-01", "OTHER.PDF") is False
    assert reloaded.is_page_completed("electric:open:1") is True
    assert snapshot.saved_at


def test_writes_are_whole_file_overwrites(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)

    store.save_cases_snapshot([make_case("IPC-E-23-01")])
    store.save_cases_snapshot([make_case("AVU-E-23-02")])

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == SNAPSHOT_VERSION
    assert [case["case_number"] for case in data["cases"]] == ["AVU-E-23-02"]
    assert not path.with_suffix(".json.tmp").exists()


def test_remove_case_keeps_finished_cases_out(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)
    cases = [make_case("IPC-E-23-01"), make_case("AVU-E-23-02")]
    store.save_cases_snapshot(cases)

    store.remove_case("IPC-E-23-01")
    store.save_cases_snapshot(cases)

    assert [case.case_number for case in store.pending_cases()] == ["AVU-E-23-02"]


def test_missing_corrupt_or_old_snapshot_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)
    assert store.load_snapshot() is None

    path.write_text("{not json", encoding="utf-8")
    assert store.load_snapshot() is None

    path.write_text(json.dumps({"version": 0, "cases": []}), encoding="utf-8")
    assert store.load_snapshot() is None


def test_clear_removes_file_and_state(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)
    store.mark_document_processed("IPC-E-23-01", "A.PDF")

    store.clear()
    store.clear()

    assert not path.exists()
    assert store.is_processed("IPC-E-23-01", "A.PDF") is False


def test_disabled_store_never_touches_disk() -> None:
    store = CheckpointStore(enabled=False)
    store.save_cases_snapshot([make_case()])
    store.mark_document_processed("IPC-E-23-01", "A.PDF")
    store.flush()

    assert not config.CHECKPOINT_FILE.exists()
    assert store.is_processed("IPC-E-23-01", "A.PDF") is True
    assert store.load_snapshot() is None


def test_forget_pages_keeps_cases_and_processed_markers(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path)
    store.save_cases_snapshot([make_case("IPC-E-23-01")])
    store.mark_document_processed("IPC-E-23-01", "DIRECT SMITH.PDF")
    store.mark_page_completed("electric:open:1")

    store.forget_pages()

    reloaded = CheckpointStore(path)
    snapshot = reloaded.load_snapshot()
    assert snapshot.completed_pages == set()
    assert [case.case_number for case in snapshot.cases] == ["IPC-E-23-01"]
    assert reloaded.is_processed("IPC-E-23-01", "DIRECT SMITH.PDF")
    assert not reloaded.is_page_completed("electric:open:1")
