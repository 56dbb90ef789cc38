"""
Tracking for asynchronous contact import jobs.

Jobs live in a process-wide store behind the narrow ``JobStore`` interface
so the in-memory implementation can later be replaced by an external cache.
Each job is written only by its own background run and read by polling.
"""
from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from contact_ingest.core.errors import JobNotFoundError
from .results import ImportResult

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 60 * 60
_ID_ALPHABET = string.ascii_lowercase + string.digits


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ImportJob(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    job_id: str
    status: JobStatus = JobStatus.PENDING
    result: ImportResult = Field(default_factory=ImportResult)
    processed_records: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


def generate_job_id() -> str:
    """``import_<epoch ms>_<9 random base36 chars>``"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"import_{int(time.time() * 1000)}_{suffix}"


class JobStore(ABC):
    """Keyed store of import jobs with TTL eviction."""

    @abstractmethod
    def create(self) -> str:
        """Register a new pending job and return its id."""

    @abstractmethod
    def get(self, job_id: str) -> ImportJob:
        """Return the latest snapshot; raises JobNotFoundError."""

    @abstractmethod
    def update(self, job_id: str, **changes: Any) -> None:
        """Merge field changes into a non-terminal job."""

    @abstractmethod
    def sweep(self, now: Optional[datetime] = None) -> int:
        """Purge expired jobs; returns how many were removed."""

    def mark_processing(self, job_id: str) -> None:
        self.update(job_id, status=JobStatus.PROCESSING)

    def mark_completed(self, job_id: str, result: ImportResult) -> None:
        self.update(
            job_id,
            status=JobStatus.COMPLETED,
            result=result,
            processed_records=result.total_records,
            completed_at=_utcnow(),
        )

    def mark_failed(self, job_id: str, message: str) -> None:
        self.update(
            job_id,
            status=JobStatus.FAILED,
            error_message=message,
            completed_at=_utcnow(),
        )


class InMemoryJobStore(JobStore):
    """
    Thread-safe dictionary-backed job store.

    Snapshots handed out by ``get`` are deep copies. Terminal states are
    sticky: updates to a completed or failed job are ignored.
    """

    def __init__(
        self,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._jobs: Dict[str, ImportJob] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def create(self) -> str:
        self.sweep()
        job = ImportJob(job_id=generate_job_id(), started_at=self._clock())
        with self._lock:
            while job.job_id in self._jobs:
                job.job_id = generate_job_id()
            self._jobs[job.job_id] = job
        logger.info("Created import job %s", job.job_id)
        return job.job_id

    def get(self, job_id: str) -> ImportJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def update(self, job_id: str, **changes: Any) -> None:
        unknown = set(changes) - set(ImportJob.model_fields)
        if unknown:
            raise ValueError(f"Unknown import job fields: {sorted(unknown)}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning("Ignoring update for unknown import job %s", job_id)
                return
            if job.status.is_terminal:
                logger.warning(
                    "Ignoring update for import job %s already %s", job_id, job.status.value
                )
                return
            previous_status = job.status
            for name, value in changes.items():
                setattr(job, name, value)
            new_status = job.status

        if new_status != previous_status:
            logger.info("Import job %s: %s -> %s", job_id, previous_status.value, new_status.value)

    def sweep(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or self._clock()) - self.retention
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.started_at < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Purged %d expired import jobs", len(expired))
        return len(expired)


class JobSweeper:
    """Daemon thread calling ``store.sweep()`` every ``interval_seconds``."""

    def __init__(self, store: JobStore, interval_seconds: float):
        self.store = store
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="import-job-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.store.sweep()
            except Exception:
                logger.exception("Import job sweep failed")
