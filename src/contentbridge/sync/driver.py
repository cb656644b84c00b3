"""
ContentBridge batch driver.

Pages through the export API and hands each record to the reconciler.
One request is in flight at a time. After every applied page the cursor
moves to the highest id seen and the watermark is persisted, so a run
can be aborted between pages and resumed later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Protocol

from contentbridge.core.errors import ContentBridgeError, DestinationError
from contentbridge.core.job import JobContext
from contentbridge.core.logging import OperationLogger, get_logger
from contentbridge.core.models import RecordPage
from contentbridge.core.state import WatermarkStore, sanitize_key
from contentbridge.destination.base import DestinationStore
from contentbridge.sync.reconciler import RecordReconciler

logger = get_logger(__name__)


class PageFetcher(Protocol):
    """Anything that can serve pages of the cursor protocol."""

    def fetch_page(self, post_type: str, status: str, cursor: int, limit: int) -> RecordPage:
        ...


class DriverState(Enum):
    """Lifecycle of a driver run."""

    IDLE = auto()
    FETCHING = auto()
    APPLYING = auto()
    DONE = auto()
    FAILED = auto()


@dataclass
class BatchStep:
    """Outcome of one fetch-and-apply step."""

    imported: int
    last_id: int
    done: bool

    def to_dict(self) -> dict[str, Any]:
        return {"imported": self.imported, "lastID": self.last_id, "done": self.done}


@dataclass
class RunReport:
    """Counts for a whole import run."""

    post_type: str
    status: str
    start_cursor: int
    final_cursor: int = 0
    records_imported: int = 0
    pages: int = 0
    done: bool = False
    failed_records: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "post_type": self.post_type,
            "status": self.status,
            "start_cursor": self.start_cursor,
            "final_cursor": self.final_cursor,
            "records_imported": self.records_imported,
            "pages": self.pages,
            "done": self.done,
            "failed_records": list(self.failed_records),
            "warnings": list(self.warnings),
        }


class BatchFailedError(ContentBridgeError):
    """A page could not be fetched or saved. Carries the counts reached so far."""

    def __init__(self, message: str, report: RunReport, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.report = report


@dataclass
class _PageResult:
    page: RecordPage
    imported: int
    cursor: int
    done: bool


class BatchDriver:
    """Sequential fetch/apply loop for one (type, status) partition."""

    def __init__(
        self,
        fetcher: PageFetcher,
        reconciler: RecordReconciler,
        watermarks: WatermarkStore,
        destination: DestinationStore | None = None,
        post_type: str = "post",
        status: str = "publish",
    ) -> None:
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.watermarks = watermarks
        self.destination = destination or reconciler.destination
        self.post_type = sanitize_key(post_type) or "post"
        self.status = sanitize_key(status) or "publish"
        self.state = DriverState.IDLE
        self.report: RunReport | None = None

    @property
    def watermark(self) -> int:
        return self.watermarks.get(self.post_type)

    def step(self, cursor: int | None, batch_size: int) -> BatchStep:
        """Fetch and apply a single page after `cursor`."""
        start = self.watermark if cursor is None else max(0, int(cursor))
        limit = max(1, int(batch_size))
        report = RunReport(post_type=self.post_type, status=self.status, start_cursor=start)
        self.report = report

        result = self._process_page(start, limit, report)
        report.final_cursor = result.cursor
        report.done = result.done
        self.state = DriverState.DONE if result.done else DriverState.IDLE
        return BatchStep(imported=result.imported, last_id=result.cursor, done=result.done)

    def run(
        self,
        start_id: int | None = None,
        batch_size: int = 5,
        target_total: int | None = None,
        context: JobContext | None = None,
    ) -> RunReport:
        """Loop until the source is exhausted or `target_total` records are imported."""
        cursor = self.watermark if start_id is None else max(0, int(start_id))
        batch_size = max(1, int(batch_size))
        target = target_total if target_total and target_total > 0 else None

        report = RunReport(
            post_type=self.post_type,
            status=self.status,
            start_cursor=cursor,
            final_cursor=cursor,
        )
        self.report = report

        with OperationLogger(
            "import run",
            logger,
            post_type=self.post_type,
            status=self.status,
            start_cursor=cursor,
            batch_size=batch_size,
            target_total=target,
        ) as operation:
            while True:
                if context is not None:
                    context.check_cancelled()

                limit = batch_size
                if target is not None:
                    limit = min(batch_size, target - report.records_imported)

                result = self._process_page(cursor, limit, report)
                cursor = result.cursor
                report.final_cursor = cursor

                reached_target = target is not None and report.records_imported >= target
                if context is not None:
                    expected = target or report.records_imported + max(
                        0, result.page.total - len(result.page.records)
                    )
                    context.update_progress(
                        current=report.records_imported,
                        total=max(expected, report.records_imported),
                        message=f"Imported {report.records_imported} {self.post_type} records",
                        stage=self.post_type,
                    )

                if result.done or reached_target:
                    report.done = True
                    break

            operation.update(
                records_imported=report.records_imported,
                final_cursor=report.final_cursor,
                pages=report.pages,
                failed_records=len(report.failed_records),
            )

        self.state = DriverState.DONE
        return report

    def _process_page(self, cursor: int, limit: int, report: RunReport) -> _PageResult:
        self.state = DriverState.FETCHING
        try:
            page = self.fetcher.fetch_page(self.post_type, self.status, cursor, limit)
        except ContentBridgeError as e:
            self.state = DriverState.FAILED
            report.final_cursor = cursor
            raise BatchFailedError(
                f"Fetching {self.post_type} after id {cursor} failed: {e.message}",
                report,
                details={"cursor": cursor, "limit": limit},
            ) from e

        if not page.records:
            logger.info("Source exhausted", post_type=self.post_type, cursor=cursor)
            return _PageResult(page=page, imported=0, cursor=cursor, done=True)

        self.state = DriverState.APPLYING
        imported = 0
        for record in page.records:
            try:
                outcome = self.reconciler.reconcile(record)
            except Exception as e:
                report.failed_records.append(record.id)
                logger.warning("Record skipped", source_id=record.id, error=str(e))
                continue
            imported += 1
            report.warnings.extend(outcome.warnings)

        new_cursor = max(cursor, page.max_id or cursor)
        # The watermark only moves once the page is durable
        try:
            self.destination.flush()
        except (OSError, DestinationError) as e:
            self.state = DriverState.FAILED
            report.final_cursor = cursor
            raise BatchFailedError(
                f"Saving {self.post_type} page after id {cursor} failed: {e}",
                report,
                details={"cursor": cursor, "limit": limit},
            ) from e
        self.watermarks.advance(self.post_type, new_cursor)

        report.pages += 1
        report.records_imported += imported

        done = imported == 0 or len(page.records) < limit
        logger.info(
            "Page applied",
            post_type=self.post_type,
            cursor=new_cursor,
            fetched=len(page.records),
            imported=imported,
            done=done,
        )
        return _PageResult(page=page, imported=imported, cursor=new_cursor, done=done)
