"""
Tests for contentbridge.sync.driver module.
"""

from pathlib import Path
from typing import Any, Callable

import pytest

from contentbridge.core.job import JobCancelledException, JobContext
from contentbridge.core.models import ContentRecord
from contentbridge.core.state import MemoryWatermarkStore
from contentbridge.destination.memory import InMemoryDestination, JsonFileDestination
from contentbridge.export.service import ExportService
from contentbridge.export.source import InMemorySource
from contentbridge.sync.driver import (
    BatchDriver,
    BatchFailedError,
    BatchStep,
    DriverState,
)
from contentbridge.sync.reconciler import RecordReconciler
from contentbridge.sync.resolver import EntityResolver

from conftest import RecordingFetcher


@pytest.fixture
def reconciler(destination: InMemoryDestination) -> RecordReconciler:
    return RecordReconciler(destination, EntityResolver(destination))


@pytest.fixture
def driver(
    fetcher: RecordingFetcher, reconciler: RecordReconciler, watermarks: MemoryWatermarkStore
) -> BatchDriver:
    return BatchDriver(fetcher, reconciler, watermarks, post_type="post", status="publish")


class TestRun:
    def test_pages_through_source(
        self,
        driver: BatchDriver,
        fetcher: RecordingFetcher,
        destination: InMemoryDestination,
        watermarks: MemoryWatermarkStore,
    ) -> None:
        report = driver.run(batch_size=5)

        assert fetcher.calls == [(0, 5), (5, 5), (10, 5)]
        assert report.records_imported == 12
        assert report.pages == 3
        assert report.done is True
        assert report.final_cursor == 12
        assert watermarks.get("post") == 12
        assert driver.state is DriverState.DONE
        assert sorted(p.fields.slug for p in destination.posts_of_type("post")) == sorted(
            f"post-{i}" for i in range(1, 13)
        )

    def test_exact_multiple_needs_empty_page(
        self, reconciler: RecordReconciler, watermarks: MemoryWatermarkStore, make_record: Callable[..., ContentRecord]
    ) -> None:
        service = ExportService(InMemorySource(records=[make_record(i) for i in range(1, 11)]), token="t")
        fetcher = RecordingFetcher(service)
        driver = BatchDriver(fetcher, reconciler, watermarks)

        report = driver.run(batch_size=5)

        assert fetcher.calls == [(0, 5), (5, 5), (10, 5)]
        assert report.records_imported == 10
        assert report.pages == 2
        assert watermarks.get("post") == 10

    def test_resumes_from_watermark(
        self, driver: BatchDriver, fetcher: RecordingFetcher, watermarks: MemoryWatermarkStore
    ) -> None:
        watermarks.advance("post", 8)

        report = driver.run(batch_size=5)

        assert fetcher.calls[0] == (8, 5)
        assert report.records_imported == 4
        assert report.start_cursor == 8

    def test_start_override_never_lowers_watermark(
        self, driver: BatchDriver, fetcher: RecordingFetcher, watermarks: MemoryWatermarkStore
    ) -> None:
        watermarks.advance("post", 10)

        report = driver.run(start_id=0, batch_size=5, target_total=3)

        assert fetcher.calls == [(0, 3)]
        assert report.records_imported == 3
        assert report.final_cursor == 3
        assert watermarks.get("post") == 10

    def test_target_total_caps_pages(self, driver: BatchDriver, fetcher: RecordingFetcher) -> None:
        report = driver.run(batch_size=5, target_total=7)

        assert fetcher.calls == [(0, 5), (5, 2)]
        assert report.records_imported == 7
        assert report.done is True
        assert report.final_cursor == 7

    def test_replay_is_idempotent(
        self,
        driver: BatchDriver,
        destination: InMemoryDestination,
        watermarks: MemoryWatermarkStore,
    ) -> None:
        driver.run(batch_size=5)
        watermarks.reset("post", 0)
        driver.run(batch_size=5)

        assert len(destination.posts_of_type("post")) == 12

    def test_fetch_failure_carries_partial_report(
        self,
        export_service: ExportService,
        reconciler: RecordReconciler,
        watermarks: MemoryWatermarkStore,
    ) -> None:
        driver = BatchDriver(RecordingFetcher(export_service, fail_after=1), reconciler, watermarks)

        with pytest.raises(BatchFailedError) as excinfo:
            driver.run(batch_size=5)

        report = excinfo.value.report
        assert report.records_imported == 5
        assert report.final_cursor == 5
        assert excinfo.value.details == {"cursor": 5, "limit": 5}
        assert watermarks.get("post") == 5
        assert driver.state is DriverState.FAILED

    def test_flush_failure_keeps_watermark_on_last_saved_page(
        self,
        driver: BatchDriver,
        destination: InMemoryDestination,
        watermarks: MemoryWatermarkStore,
        mocker: Any,
    ) -> None:
        mocker.patch.object(destination, "flush", side_effect=[None, OSError("disk full")])

        with pytest.raises(BatchFailedError) as excinfo:
            driver.run(batch_size=5)

        report = excinfo.value.report
        assert report.records_imported == 5
        assert report.pages == 1
        assert report.final_cursor == 5
        assert excinfo.value.details == {"cursor": 5, "limit": 5}
        assert watermarks.get("post") == 5
        assert driver.state is DriverState.FAILED

    def test_unwritable_store_never_moves_watermark(
        self,
        fetcher: RecordingFetcher,
        watermarks: MemoryWatermarkStore,
        temp_dir: Path,
    ) -> None:
        blocker = temp_dir / "not-a-directory"
        blocker.write_text("")
        store = JsonFileDestination(blocker / "store.json")
        driver = BatchDriver(fetcher, RecordReconciler(store, EntityResolver(store)), watermarks)

        with pytest.raises(BatchFailedError):
            driver.run(batch_size=5)

        assert watermarks.get("post") == 0
        assert not (blocker / "store.json").exists()
        assert driver.state is DriverState.FAILED

    def test_failing_record_is_counted(
        self, driver: BatchDriver, reconciler: RecordReconciler, mocker: Any, watermarks: MemoryWatermarkStore
    ) -> None:
        real = reconciler.reconcile

        def flaky(record: ContentRecord) -> Any:
            if record.id == 3:
                raise RuntimeError("boom")
            return real(record)

        mocker.patch.object(reconciler, "reconcile", side_effect=flaky)

        report = driver.run(batch_size=5)

        assert report.failed_records == [3]
        assert report.records_imported == 11
        assert watermarks.get("post") == 12

    def test_page_with_nothing_imported_is_done(
        self, driver: BatchDriver, reconciler: RecordReconciler, fetcher: RecordingFetcher, mocker: Any
    ) -> None:
        mocker.patch.object(reconciler, "reconcile", side_effect=RuntimeError("read-only"))

        report = driver.run(batch_size=5)

        assert fetcher.calls == [(0, 5)]
        assert report.records_imported == 0
        assert report.done is True
        assert report.failed_records == [1, 2, 3, 4, 5]

    def test_reconcile_warnings_collected(
        self,
        reconciler: RecordReconciler,
        watermarks: MemoryWatermarkStore,
        make_record: Callable[..., ContentRecord],
    ) -> None:
        record = make_record(1, featured_image={"url": "https://old.example/x.png"})
        service = ExportService(InMemorySource(records=[record]), token="t")
        driver = BatchDriver(RecordingFetcher(service), reconciler, watermarks)

        report = driver.run(batch_size=5)

        assert report.records_imported == 1
        assert len(report.warnings) == 1

    def test_flushes_after_each_page(
        self, driver: BatchDriver, destination: InMemoryDestination, mocker: Any
    ) -> None:
        flush = mocker.spy(destination, "flush")
        driver.run(batch_size=5)
        assert flush.call_count == 3


class TestProgressAndCancel:
    def test_progress_reported(self, driver: BatchDriver) -> None:
        context = JobContext()
        snapshots = []
        context.add_progress_callback(lambda p: snapshots.append((p.current, p.total)))

        driver.run(batch_size=5, context=context)

        assert snapshots == [(5, 12), (10, 12), (12, 12)]

    def test_progress_with_target(self, driver: BatchDriver) -> None:
        context = JobContext()
        snapshots = []
        context.add_progress_callback(lambda p: snapshots.append((p.current, p.total)))

        driver.run(batch_size=5, target_total=7, context=context)

        assert snapshots == [(5, 7), (7, 7)]

    def test_cancel_between_pages(
        self, driver: BatchDriver, fetcher: RecordingFetcher, watermarks: MemoryWatermarkStore
    ) -> None:
        context = JobContext()
        context.add_progress_callback(lambda p: context.cancel())

        with pytest.raises(JobCancelledException):
            driver.run(batch_size=5, context=context)

        assert fetcher.calls == [(0, 5)]
        assert watermarks.get("post") == 5


class TestStep:
    def test_single_step(self, driver: BatchDriver, watermarks: MemoryWatermarkStore) -> None:
        step = driver.step(None, 5)

        assert step == BatchStep(imported=5, last_id=5, done=False)
        assert step.to_dict() == {"imported": 5, "lastID": 5, "done": False}
        assert watermarks.get("post") == 5

    def test_last_step(self, driver: BatchDriver) -> None:
        step = driver.step(10, 5)
        assert step.to_dict() == {"imported": 2, "lastID": 12, "done": True}

    def test_empty_step(self, driver: BatchDriver, watermarks: MemoryWatermarkStore) -> None:
        step = driver.step(12, 5)

        assert step.to_dict() == {"imported": 0, "lastID": 12, "done": True}
        assert watermarks.get("post") == 0

    def test_keys_sanitized(
        self, fetcher: RecordingFetcher, reconciler: RecordReconciler, watermarks: MemoryWatermarkStore
    ) -> None:
        driver = BatchDriver(fetcher, reconciler, watermarks, post_type="Po$st", status="PUBLISH")
        assert driver.post_type == "post"
        assert driver.status == "publish"
