"""
ContentBridge Session Management.

A session owns the configuration, the watermark store, the destination
store and the export client, runs imports as jobs and writes an audit
report when closed.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from contentbridge.core.config import ContentBridgeConfig, load_config
from contentbridge.core.job import Job, JobContext, JobProgress, JobResult, JobRunner
from contentbridge.core.logging import SessionLogger, get_logger, setup_logging
from contentbridge.core.models import PostType
from contentbridge.core.state import JsonWatermarkStore, WatermarkStore
from contentbridge.destination.base import DestinationStore
from contentbridge.destination.memory import JsonFileDestination
from contentbridge.sync.client import ExportClient
from contentbridge.sync.driver import BatchDriver, BatchStep, PageFetcher, RunReport
from contentbridge.sync.fields import FieldImporter
from contentbridge.sync.media import MediaSideloader
from contentbridge.sync.reconciler import RecordReconciler
from contentbridge.sync.resolver import EntityResolver

logger = get_logger(__name__)


@dataclass
class SessionReport:
    """Audit record of everything a session did."""

    session_id: str
    started_at: datetime
    ended_at: datetime | None = None
    operations: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": (
                (self.ended_at - self.started_at).total_seconds()
                if self.ended_at
                else None
            ),
            "operations": self.operations,
            "errors": self.errors,
            "warnings": self.warnings,
            "config_snapshot": self.config_snapshot,
            "summary": {
                "total_operations": len(self.operations),
                "records_imported": sum(
                    op.get("report", {}).get("records_imported", 0) for op in self.operations
                ),
                "failed_operations": sum(
                    1 for op in self.operations if not op.get("success", True)
                ),
                "total_errors": len(self.errors),
                "total_warnings": len(self.warnings),
            },
        }

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


class ImportJob(Job[RunReport]):
    """A full import run for one content type."""

    def __init__(
        self,
        driver: BatchDriver,
        start_id: int | None = None,
        batch_size: int = 5,
        target_total: int | None = None,
    ) -> None:
        super().__init__(
            name=f"import-{driver.post_type}",
            description=f"Import {driver.status} {driver.post_type} records",
        )
        self.driver = driver
        self.start_id = start_id
        self.batch_size = batch_size
        self.target_total = target_total

    @property
    def report(self) -> RunReport | None:
        return self.driver.report

    def validate(self) -> list[str]:
        errors = []
        if self.batch_size < 1:
            errors.append("batch size must be at least 1")
        if self.target_total is not None and self.target_total < 0:
            errors.append("target total cannot be negative")
        if self.start_id is not None and self.start_id < 0:
            errors.append("start id cannot be negative")
        return errors

    def get_plan(self) -> str:
        start = "the stored watermark" if self.start_id is None else f"id {self.start_id}"
        limit = f"up to {self.target_total} records" if self.target_total else "all records"
        return (
            f"Import {limit} of type '{self.driver.post_type}' "
            f"(status '{self.driver.status}') after {start}, "
            f"{self.batch_size} per page"
        )

    def execute(self, context: JobContext) -> RunReport:
        report = self.driver.run(
            start_id=self.start_id,
            batch_size=self.batch_size,
            target_total=self.target_total,
            context=context,
        )
        for warning in report.warnings:
            context.add_warning(warning)
        return report


class Session:
    """
    Entry point for import and export operations.

    Stores and the client are created lazily from the configuration
    unless injected.
    """

    def __init__(
        self,
        config: ContentBridgeConfig | None = None,
        session_id: str | None = None,
        *,
        destination: DestinationStore | None = None,
        watermarks: WatermarkStore | None = None,
        fetcher: PageFetcher | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.config = config or load_config()
        self.started_at = datetime.now()

        setup_logging(self.config.logging)

        self.job_runner = JobRunner()
        self.session_logger = SessionLogger(
            self.config.get_session_file(self.id),
            get_logger(f"session.{self.id[:8]}"),
        )
        self._report = SessionReport(
            session_id=self.id,
            started_at=self.started_at,
            config_snapshot=self._config_snapshot(),
        )

        self._http = http_session or requests.Session()
        self._destination = destination
        self._watermarks = watermarks
        self._fetcher = fetcher
        self._client: ExportClient | None = None

        logger.info("Session started", session_id=self.id)
        self.session_logger.info("Session started", session_id=self.id)

    def _config_snapshot(self) -> dict[str, Any]:
        return self.config.model_dump(
            mode="json",
            exclude={"remote": {"token"}, "export": {"token"}},
        )

    @property
    def destination(self) -> DestinationStore:
        if self._destination is None:
            dest = self.config.destination
            self._destination = JsonFileDestination(
                dest.store_file,
                media_directory=dest.media_directory,
                base_url=dest.base_url,
            )
        return self._destination

    @property
    def watermarks(self) -> WatermarkStore:
        if self._watermarks is None:
            self._watermarks = JsonWatermarkStore(self.config.state_file)
        return self._watermarks

    @property
    def client(self) -> ExportClient:
        """Export API client. Raises ConfigError when the remote is unset."""
        if self._client is None:
            self._client = ExportClient.from_config(self.config.remote, session=self._http)
        return self._client

    @property
    def fetcher(self) -> PageFetcher:
        if self._fetcher is None:
            return self.client
        return self._fetcher

    def build_driver(self, post_type: str | None = None, status: str | None = None) -> BatchDriver:
        """Wire a driver with a fresh per-run resolver cache."""
        sideloader = MediaSideloader(self.destination, self.config.media, session=self._http)
        resolver = EntityResolver(self.destination, sideloader)
        reconciler = RecordReconciler(
            self.destination,
            resolver,
            FieldImporter(self.destination, resolver),
            self.config.importer,
        )
        return BatchDriver(
            self.fetcher,
            reconciler,
            self.watermarks,
            self.destination,
            post_type=post_type or self.config.importer.post_type,
            status=status or self.config.importer.status,
        )

    def run_import(
        self,
        post_type: str | None = None,
        status: str | None = None,
        batch_size: int | None = None,
        target_total: int | None = None,
        start_id: int | None = None,
        progress_callback: Callable[[JobProgress], None] | None = None,
    ) -> JobResult[RunReport]:
        """Run a complete import synchronously and track it in the report."""
        driver = self.build_driver(post_type, status)
        job = ImportJob(
            driver,
            start_id=start_id,
            batch_size=batch_size or self.config.importer.batch_size,
            target_total=target_total,
        )
        if progress_callback is not None:
            job.context.add_progress_callback(progress_callback)

        self.session_logger.info(
            "Executing job", job_id=job.id, job_name=job.name, plan=job.get_plan()
        )
        result = self.job_runner.run_sync(job)
        if result.data is None and job.report is not None:
            # Partial counts from a failed or cancelled run
            result.data = job.report
        self._track_operation(job.name, job.description, result, job.report)
        return result

    def run_step(
        self,
        start_id: int | None = None,
        batch_size: int | None = None,
        post_type: str | None = None,
        status: str | None = None,
    ) -> BatchStep:
        """One fetch/apply step. Fetch failures propagate as BatchFailedError."""
        driver = self.build_driver(post_type, status)
        started = datetime.now()
        try:
            step = driver.step(start_id, batch_size or self.config.importer.batch_size)
        except Exception as e:
            result: JobResult[Any] = JobResult(
                success=False, error=str(e), start_time=started, end_time=datetime.now()
            )
            self._track_operation(f"step-{driver.post_type}", "Import one page", result, driver.report)
            raise

        result = JobResult(
            success=True,
            data=step,
            warnings=driver.report.warnings if driver.report else [],
            start_time=started,
            end_time=datetime.now(),
        )
        self._track_operation(f"step-{driver.post_type}", "Import one page", result, driver.report)
        return step

    def fetch_types(self) -> list[PostType]:
        return self.client.fetch_types()

    def get_watermarks(self) -> dict[str, int]:
        return self.watermarks.load_all()

    def reset_watermark(self, post_type: str, value: int = 0) -> None:
        self.watermarks.reset(post_type, value)
        self.session_logger.warning("Watermark reset", post_type=post_type, value=value)

    def _track_operation(
        self,
        name: str,
        description: str,
        result: JobResult[Any],
        report: RunReport | None,
    ) -> None:
        record: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "name": name,
            "description": description,
            "success": result.success,
            "duration_seconds": result.duration_seconds,
        }
        if report is not None:
            record["report"] = report.to_dict()

        if result.error:
            record["error"] = result.error
            self._report.errors.append(
                {"timestamp": datetime.now().isoformat(), "operation": name, "error": result.error}
            )
        if result.warnings:
            self._report.warnings.extend(result.warnings)

        self._report.operations.append(record)

        if result.success:
            self.session_logger.info("Operation completed", operation=name)
        else:
            self.session_logger.error("Operation failed", operation=name, error=result.error)

    def close(self) -> Path:
        """Persist the destination, the session log and the report."""
        self._report.ended_at = datetime.now()

        if self._destination is not None:
            self._destination.flush()
        self.session_logger.close()

        report_path = self.config.session_directory / f"report_{self.id[:8]}.json"
        self._report.save(report_path)

        logger.info(
            "Session closed",
            session_id=self.id,
            duration_seconds=(self._report.ended_at - self.started_at).total_seconds(),
            report_path=str(report_path),
        )
        return report_path

    def get_report(self) -> SessionReport:
        return self._report

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

