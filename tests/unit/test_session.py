"""
Tests for contentbridge.core.session module.
"""

import json
from typing import Any

import pytest

from contentbridge.core.config import ContentBridgeConfig
from contentbridge.core.errors import ConfigError
from contentbridge.core.state import MemoryWatermarkStore
from contentbridge.destination.memory import InMemoryDestination
from contentbridge.core.session import ImportJob, Session
from contentbridge.export.service import ExportService
from contentbridge.sync.driver import BatchFailedError

from conftest import RecordingFetcher


@pytest.fixture
def session(
    sample_config: ContentBridgeConfig,
    destination: InMemoryDestination,
    watermarks: MemoryWatermarkStore,
    fetcher: RecordingFetcher,
) -> Session:
    return Session(
        config=sample_config,
        destination=destination,
        watermarks=watermarks,
        fetcher=fetcher,
    )


class TestImportJob:
    def test_plan_and_validation(self, session: Session) -> None:
        job = ImportJob(session.build_driver("post"), start_id=None, batch_size=5, target_total=20)

        assert job.name == "import-post"
        assert "up to 20 records" in job.get_plan()
        assert "stored watermark" in job.get_plan()
        assert job.validate() == []

    def test_invalid_parameters(self, session: Session) -> None:
        job = ImportJob(session.build_driver(), start_id=-1, batch_size=0, target_total=-5)
        assert len(job.validate()) == 3


class TestSession:
    def test_run_import(self, session: Session, watermarks: MemoryWatermarkStore) -> None:
        snapshots = []

        result = session.run_import(batch_size=5, progress_callback=lambda p: snapshots.append(p.current))

        assert result.success
        assert result.data.records_imported == 12
        assert snapshots == [5, 10, 12]
        assert watermarks.get("post") == 12

        report = session.get_report()
        assert len(report.operations) == 1
        assert report.operations[0]["name"] == "import-post"
        assert report.to_dict()["summary"]["records_imported"] == 12

    def test_failed_import_keeps_partial_report(
        self,
        sample_config: ContentBridgeConfig,
        destination: InMemoryDestination,
        watermarks: MemoryWatermarkStore,
        export_service: ExportService,
    ) -> None:
        session = Session(
            config=sample_config,
            destination=destination,
            watermarks=watermarks,
            fetcher=RecordingFetcher(export_service, fail_after=2),
        )

        result = session.run_import(batch_size=5)

        assert not result.success
        assert "failed" in result.error
        assert result.data.records_imported == 10
        assert session.get_report().errors[0]["operation"] == "import-post"

    def test_validation_failure(self, session: Session, fetcher: RecordingFetcher) -> None:
        result = session.run_import(target_total=-1)

        assert not result.success
        assert result.error.startswith("Validation failed")
        assert fetcher.calls == []

    def test_run_step(self, session: Session) -> None:
        step = session.run_step(start_id=10, batch_size=5)

        assert step.to_dict() == {"imported": 2, "lastID": 12, "done": True}
        assert session.get_report().operations[0]["success"] is True

    def test_run_step_failure_tracked(
        self,
        sample_config: ContentBridgeConfig,
        destination: InMemoryDestination,
        watermarks: MemoryWatermarkStore,
        export_service: ExportService,
    ) -> None:
        session = Session(
            config=sample_config,
            destination=destination,
            watermarks=watermarks,
            fetcher=RecordingFetcher(export_service, fail_after=0),
        )

        with pytest.raises(BatchFailedError):
            session.run_step()

        assert session.get_report().operations[0]["success"] is False

    def test_reset_watermark(self, session: Session, watermarks: MemoryWatermarkStore) -> None:
        watermarks.advance("post", 9)
        session.reset_watermark("post", 2)
        assert session.get_watermarks() == {"post": 2}

    def test_client_requires_remote(self, session: Session) -> None:
        with pytest.raises(ConfigError):
            session.client

    def test_default_stores_from_config(self, sample_config: ContentBridgeConfig) -> None:
        session = Session(config=sample_config)

        session.watermarks.advance("page", 4)
        session.destination.flush()

        assert json.loads(sample_config.state_file.read_text()) == {"page": 4}
        assert sample_config.destination.store_file.exists()

    def test_close_writes_report(self, session: Session, sample_config: ContentBridgeConfig, mocker: Any) -> None:
        flush = mocker.spy(session.destination, "flush")
        session.run_import(batch_size=5)

        report_path = session.close()

        assert report_path.parent == sample_config.session_directory
        data = json.loads(report_path.read_text())
        assert data["summary"]["total_operations"] == 1
        assert "token" not in data["config_snapshot"]["remote"]
        assert flush.called

    def test_context_manager(self, sample_config: ContentBridgeConfig, destination: InMemoryDestination) -> None:
        with Session(config=sample_config, destination=destination) as session:
            session_id = session.id
        assert (sample_config.session_directory / f"report_{session_id[:8]}.json").exists()
