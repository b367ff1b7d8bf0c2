from __future__ import annotations

from datetime import date

import pytest

from app.crawler import db, discovery
from app.crawler.discovery import DiscoveryMode, DiscoveryProducer
from app.crawler.errors import BrowserCrashedError, PersistenceFatalError
from app.crawler.persistence import PersistenceGateway
from app.crawler.state import CheckpointStore
from tests.crawler_fakes import FakeSource, make_case, make_doc, record_events


class _RecordingQueue:
    def __init__(self) -> None:
        self.bundles = []
        self.completed = False

    def enqueue_discovered_case(self, bundle) -> int:
        self.bundles.append(bundle)
        return len(bundle.candidates)

    def mark_discovery_complete(self) -> None:
        self.completed = True


def _row(number: str):
    return make_case(number, date_filed=None)


def db_case_count() -> int:
    conn = db.get_connection()
    try:
        return int(conn.execute("SELECT COUNT(*) FROM cases").fetchone()[0])
    finally:
        conn.close()


@pytest.fixture
def gateway() -> PersistenceGateway:
    db.initialize_schema()
    return PersistenceGateway()


def test_historical_discovery_applies_year_window(gateway: PersistenceGateway) -> None:
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-09-01")], [_row("AVU-E-24-02"), _row("AVU-E-24-03")]]},
        filed={
            "IPC-E-23-01": date(2023, 5, 31),
            "IPC-E-09-01": date(2009, 12, 31),
            "AVU-E-24-02": date(2024, 12, 31),
        },
        documents={"IPC-E-23-01": [make_doc("DIRECT A.PDF")], "AVU-E-24-02": [make_doc("DIRECT B.PDF")]},
    )
    queue = _RecordingQueue()
    producer = DiscoveryProducer(
        source,
        mode=DiscoveryMode.HISTORICAL,
        start_year=2010,
        end_year=2024,
        queue=queue,
        checkpoint=CheckpointStore(),
        gateway=gateway,
    )

    result = producer.run(object(), object())

    assert [case.case_number for case in result.cases] == ["IPC-E-23-01", "AVU-E-24-02"]
    assert result.cases[0].date_filed == "2023-05-31"
    assert [bundle.case.case_number for bundle in queue.bundles] == ["IPC-E-23-01", "AVU-E-24-02"]
    assert queue.completed is True
    assert producer.stats.skipped_out_of_range == 1
    assert producer.stats.skipped_no_date == 1
    assert producer.stats.pages_visited == 2
    # Cases reach the store only with their first uploaded document.
    assert gateway.known_case_numbers() == set()
    assert db_case_count() == 0


def test_historical_discovery_skips_known_cases(gateway: PersistenceGateway) -> None:
    gateway.upload_document(make_case("IPC-E-23-01"), make_doc("DIRECT A.PDF"), "stored text")
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-05")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-05": date(2023, 2, 1)},
    )
    queue = _RecordingQueue()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=queue, checkpoint=CheckpointStore(), gateway=gateway,
    )

    producer.run(object(), object())

    assert source.metadata_reads == ["IPC-E-23-05"]
    assert producer.stats.skipped_known == 1


def test_nightly_discovery_enqueues_known_case_only_with_new_documents(gateway: PersistenceGateway) -> None:
    grown, static = make_case("IPC-E-23-01"), make_case("IPC-E-23-02")
    gateway.upload_document(grown, make_doc("DIRECT A.PDF"), "already stored text")
    gateway.upload_document(static, make_doc("DIRECT S.PDF"), "already stored text")
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-02": date(2023, 1, 2)},
        documents={
            "IPC-E-23-01": [make_doc("DIRECT A.PDF"), make_doc("REBUTTAL A.PDF")],
            "IPC-E-23-02": [make_doc("DIRECT S.PDF")],
        },
    )
    queue = _RecordingQueue()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.NIGHTLY, start_year=2010, end_year=2030,
        queue=queue, checkpoint=CheckpointStore(enabled=False), gateway=gateway,
    )

    producer.run(object(), object())

    assert [bundle.case.case_number for bundle in queue.bundles] == ["IPC-E-23-01"]
    assert producer.stats.skipped_known == 1


def test_verify_mode_collects_without_queue_or_documents(gateway: PersistenceGateway) -> None:
    gateway.upload_document(make_case("IPC-E-23-01"), make_doc("DIRECT A.PDF"), "stored text")
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-02": date(2023, 1, 2)},
    )
    producer = DiscoveryProducer(source, mode=DiscoveryMode.VERIFY, start_year=2010, end_year=2024, queue=_RecordingQueue())

    result = producer.run(object(), object())

    assert [case.case_number for case in result.cases] == ["IPC-E-23-01", "IPC-E-23-02"]
    assert source.document_reads == []
    assert producer.queue is None


def test_case_errors_are_counted_and_skipped(gateway: PersistenceGateway, monkeypatch: pytest.MonkeyPatch) -> None:
    events = record_events(monkeypatch, discovery)
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-02": date(2023, 1, 2)},
        failing_metadata={"IPC-E-23-01"},
    )
    queue = _RecordingQueue()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=queue, checkpoint=CheckpointStore(), gateway=gateway,
    )

    result = producer.run(object(), object())

    assert [case.case_number for case in result.cases] == ["IPC-E-23-02"]
    assert producer.stats.case_errors == 1
    assert any(fields.get("step") == "case_metadata_failed" for label, fields in events if label == "error")


def test_repeated_listing_page_stops_walk(gateway: PersistenceGateway) -> None:
    page = [_row("IPC-E-23-01")]
    source = FakeSource({"electric": [page, page, [_row("IPC-E-23-09")]]}, filed={"IPC-E-23-01": date(2023, 1, 1)})
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=_RecordingQueue(), checkpoint=CheckpointStore(), gateway=gateway,
    )

    producer.run(object(), object())

    assert producer.stats.pages_visited == 1
    assert "IPC-E-23-09" not in source.metadata_reads


def test_checkpoint_records_pages_and_skips_them_on_resume(gateway: PersistenceGateway) -> None:
    pages = {"electric": [[_row("IPC-E-23-01")], [_row("IPC-E-23-02")]]}
    filed = {"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-02": date(2023, 1, 2)}
    checkpoint = CheckpointStore()
    DiscoveryProducer(
        FakeSource(pages, filed=filed), mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=_RecordingQueue(), checkpoint=checkpoint, gateway=PersistenceGateway(),
    ).run(object(), object())

    resumed = CheckpointStore()
    snapshot = resumed.load_snapshot()
    assert [case.case_number for case in snapshot.cases] == ["IPC-E-23-01", "IPC-E-23-02"]
    assert resumed.is_page_completed("electric:open:1")

    source = FakeSource(pages, filed=filed)
    DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=_RecordingQueue(), checkpoint=resumed, gateway=PersistenceGateway(),
        seed_cases=snapshot.cases,
    ).run(object(), object())

    assert source.metadata_reads == []


def test_browser_crash_saves_snapshot_and_propagates(gateway: PersistenceGateway) -> None:
    class _CrashingSource(FakeSource):
        def read_case_metadata(self, page, case):
            if case.case_number == "IPC-E-23-02":
                raise BrowserCrashedError("Target closed")
            return super().read_case_metadata(page, case)

    source = _CrashingSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1)},
    )
    queue = _RecordingQueue()
    checkpoint = CheckpointStore()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=queue, checkpoint=checkpoint, gateway=gateway,
    )

    with pytest.raises(BrowserCrashedError):
        producer.run(object(), object())

    assert queue.completed is True
    assert [case.case_number for case in CheckpointStore().load_snapshot().cases] == ["IPC-E-23-01"]


def test_stop_ends_walk_before_next_case(gateway: PersistenceGateway) -> None:
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-02": date(2023, 1, 2)},
    )
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=_RecordingQueue(), checkpoint=CheckpointStore(), gateway=gateway,
    )
    original = source.read_case_metadata

    def _stop_after_first(page, case):
        producer.stop()
        return original(page, case)

    source.read_case_metadata = _stop_after_first
    producer.run(object(), object())

    assert source.metadata_reads == ["IPC-E-23-01"]
    assert not producer.checkpoint.is_page_completed("electric:open:1")


def test_case_with_only_a_case_row_is_not_skipped_as_known(gateway: PersistenceGateway) -> None:
    gateway.ensure_case(make_case("IPC-E-23-01"))
    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1)},
        documents={"IPC-E-23-01": [make_doc("DIRECT A.PDF")]},
    )
    queue = _RecordingQueue()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=queue, checkpoint=CheckpointStore(), gateway=gateway,
    )

    producer.run(object(), object())

    assert [bundle.case.case_number for bundle in queue.bundles] == ["IPC-E-23-01"]
    assert producer.stats.skipped_known == 0


def test_walked_page_is_marked_only_after_its_cases_are_saved(
    gateway: PersistenceGateway, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(discovery.config, "CHECKPOINT_EVERY_ACCEPTED", 1000)

    class _AuditingStore(CheckpointStore):
        def __init__(self) -> None:
            super().__init__()
            self.cases_on_disk: dict[str, list[str]] = {}

        def mark_page_completed(self, page_key: str) -> None:
            on_disk = CheckpointStore().load_snapshot()
            self.cases_on_disk[page_key] = [case.case_number for case in on_disk.cases]
            super().mark_page_completed(page_key)

    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")], [_row("IPC-E-23-03")]]},
        filed={
            "IPC-E-23-01": date(2023, 1, 1),
            "IPC-E-23-02": date(2023, 1, 2),
            "IPC-E-23-03": date(2023, 1, 3),
        },
    )
    checkpoint = _AuditingStore()
    DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=_RecordingQueue(), checkpoint=checkpoint, gateway=gateway,
    ).run(object(), object())

    assert checkpoint.cases_on_disk == {
        "electric:open:1": ["IPC-E-23-01", "IPC-E-23-02"],
        "electric:open:2": ["IPC-E-23-01", "IPC-E-23-02", "IPC-E-23-03"],
    }


def test_store_errors_are_logged_and_discovery_continues(
    gateway: PersistenceGateway, monkeypatch: pytest.MonkeyPatch
) -> None:
    events = record_events(monkeypatch, discovery)

    class _LockedGateway(PersistenceGateway):
        def known_case_numbers(self) -> set[str]:
            raise PersistenceFatalError("known case lookup failed: database is locked")

    class _FlakyQueue(_RecordingQueue):
        def enqueue_discovered_case(self, bundle) -> int:
            if bundle.case.case_number == "IPC-E-23-01":
                raise PersistenceFatalError("stored name lookup failed: database is locked")
            return super().enqueue_discovered_case(bundle)

    source = FakeSource(
        {"electric": [[_row("IPC-E-23-01"), _row("IPC-E-23-02")]]},
        filed={"IPC-E-23-01": date(2023, 1, 1), "IPC-E-23-02": date(2023, 1, 2)},
    )
    queue = _FlakyQueue()
    producer = DiscoveryProducer(
        source, mode=DiscoveryMode.HISTORICAL, start_year=2010, end_year=2024,
        queue=queue, checkpoint=CheckpointStore(), gateway=_LockedGateway(),
    )

    result = producer.run(object(), object())

    assert [bundle.case.case_number for bundle in queue.bundles] == ["IPC-E-23-02"]
    assert producer.stats.case_errors == 1
    # The case that could not be queued stays in the snapshot for the next run.
    assert [case.case_number for case in result.cases] == ["IPC-E-23-01", "IPC-E-23-02"]
    assert [case.case_number for case in CheckpointStore().load_snapshot().cases] == [
        "IPC-E-23-01",
        "IPC-E-23-02",
    ]
    steps = [fields.get("step") for label, fields in events if label == "error"]
    assert "known_cases_failed" in steps
    assert "case_enqueue_failed" in steps
