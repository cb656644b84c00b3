"""
ContentBridge job execution.

Runs import work either inline or on a single background thread, with
record-count progress and cooperative cancellation between pages.
"""

from __future__ import annotations

import threading
import traceback
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto
from typing import Any, Generic, TypeVar

from contentbridge.core.logging import get_logger

T = TypeVar("T")
logger = get_logger(__name__)


class JobStatus(Enum):
    """Status of a job execution."""

    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass
class JobProgress:
    """Records processed so far against the expected total."""

    current: int = 0
    total: int = 0
    message: str = ""
    stage: str = ""

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(100.0, (self.current / self.total) * 100)


@dataclass
class JobResult(Generic[T]):
    """Result of a finished job."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_traceback: str | None = None
    warnings: list[str] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class JobCancelledException(Exception):
    """Raised inside a job once cancellation has been requested."""


class JobContext:
    """Cancellation flag and progress channel handed to a running job."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._progress = JobProgress()
        self._listeners: list[Callable[[JobProgress], None]] = []
        self._warnings: list[str] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check_cancelled(self) -> None:
        """Raise JobCancelledException if cancellation was requested."""
        if self.is_cancelled:
            raise JobCancelledException("Job was cancelled")

    def update_progress(
        self,
        current: int | None = None,
        total: int | None = None,
        message: str | None = None,
        stage: str | None = None,
    ) -> None:
        changes = {
            name: value
            for name, value in (("current", current), ("total", total), ("message", message), ("stage", stage))
            if value is not None
        }
        with self._lock:
            self._progress = replace(self._progress, **changes)
            snapshot = self._progress

        # Listeners run outside the lock; snapshots are never mutated
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Progress listener failed", error=str(e))

    def add_progress_callback(self, callback: Callable[[JobProgress], None]) -> None:
        self._listeners.append(callback)

    def get_progress(self) -> JobProgress:
        with self._lock:
            return replace(self._progress)

    def add_warning(self, warning: str) -> None:
        with self._lock:
            self._warnings.append(warning)

    def get_warnings(self) -> list[str]:
        with self._lock:
            return list(self._warnings)


class Job(ABC, Generic[T]):
    """
    One unit of import work.

    Subclasses implement `execute` and `get_plan`; `validate` is checked
    by the runner before anything touches the remote or the destination.
    """

    def __init__(self, name: str, description: str) -> None:
        self.id = uuid.uuid4().hex
        self.name = name
        self.description = description
        self.status = JobStatus.PENDING
        self.context = JobContext()
        self.result: JobResult[T] | None = None
        self.created_at = datetime.now()
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None

    @abstractmethod
    def execute(self, context: JobContext) -> T:
        ...

    @abstractmethod
    def get_plan(self) -> str:
        """Human-readable description of what the job will do."""

    def validate(self) -> list[str]:
        return []


class JobRunner:
    """Tracks submitted jobs and runs them inline or on a worker thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job[Any]] = {}
        self._workers: dict[str, threading.Thread] = {}
        self._status_callbacks: list[Callable[[str, JobStatus], None]] = []

    def submit(self, job: Job[T]) -> str:
        with self._lock:
            self._jobs[job.id] = job
        logger.debug("Job queued", job_id=job.id, job_name=job.name)
        return job.id

    def start(self, job_id: str) -> None:
        """Run a submitted job on its own daemon thread."""
        job = self._require(job_id)
        if self._fail_validation(job):
            return
        worker = threading.Thread(target=self._execute_job, args=(job,), name=f"import-{job_id[:8]}", daemon=True)
        with self._lock:
            self._workers[job_id] = worker
        worker.start()

    def run_sync(self, job: Job[T]) -> JobResult[T]:
        """Run a job on the calling thread and return its result."""
        self.submit(job)
        if not self._fail_validation(job):
            self._execute_job(job)
        assert job.result is not None
        return job.result

    def _fail_validation(self, job: Job[Any]) -> bool:
        problems = job.validate()
        if problems:
            job.started_at = datetime.now()
            self._finish(job, JobStatus.FAILED, error="Validation failed: " + "; ".join(problems))
        return bool(problems)

    def _execute_job(self, job: Job[Any]) -> None:
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        self._notify_status(job.id, JobStatus.RUNNING)
        logger.info("Job started", job_id=job.id, job_name=job.name)

        try:
            data = job.execute(job.context)
        except JobCancelledException:
            self._finish(job, JobStatus.CANCELLED, error="Job was cancelled")
        except Exception as e:
            self._finish(job, JobStatus.FAILED, error=str(e), error_traceback=traceback.format_exc())
        else:
            self._finish(job, JobStatus.COMPLETED, data=data)
        finally:
            with self._lock:
                self._workers.pop(job.id, None)

    def _finish(self, job: Job[Any], status: JobStatus, **outcome: Any) -> None:
        job.status = status
        job.completed_at = datetime.now()
        job.result = JobResult(
            success=status is JobStatus.COMPLETED,
            warnings=job.context.get_warnings(),
            start_time=job.started_at,
            end_time=job.completed_at,
            **outcome,
        )
        log = logger.error if status is JobStatus.FAILED else logger.info
        log(
            f"Job {status.name.lower()}",
            job_id=job.id,
            job_name=job.name,
            duration_seconds=job.result.duration_seconds,
            error=job.result.error,
        )
        self._notify_status(job.id, status)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. Takes effect at the job's next page boundary."""
        job = self._require(job_id)
        if job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            return False
        job.context.cancel()
        logger.info("Job cancellation requested", job_id=job_id)
        return True

    def wait(self, job_id: str, timeout: float | None = None) -> JobResult[Any] | None:
        worker = self._workers.get(job_id)
        if worker is not None:
            worker.join(timeout)
        return self.get_result(job_id)

    def get_job(self, job_id: str) -> Job[Any] | None:
        with self._lock:
            return self._jobs.get(job_id)

    def get_status(self, job_id: str) -> JobStatus | None:
        job = self.get_job(job_id)
        return None if job is None else job.status

    def get_progress(self, job_id: str) -> JobProgress | None:
        job = self.get_job(job_id)
        return None if job is None else job.context.get_progress()

    def get_result(self, job_id: str) -> JobResult[Any] | None:
        job = self.get_job(job_id)
        return None if job is None else job.result

    def add_status_callback(self, callback: Callable[[str, JobStatus], None]) -> None:
        self._status_callbacks.append(callback)

    def _require(self, job_id: str) -> Job[Any]:
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        return job

    def _notify_status(self, job_id: str, status: JobStatus) -> None:
        for callback in self._status_callbacks:
            try:
                callback(job_id, status)
            except Exception as e:
                logger.warning("Status callback failed", error=str(e))
