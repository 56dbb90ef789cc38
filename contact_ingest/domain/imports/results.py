"""
Outcome counters for contact imports.

``ImportResult`` is the summary returned to callers; ``ResultAggregator``
accumulates it while batch commits run on worker threads.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .validators import RejectionReason

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERROR_DETAILS = 100


class ImportResult(BaseModel):
    """Summary of one import run. Serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_records: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    duplicate_phone_numbers: int = 0
    failed_due_to_missing_num_client: int = 0
    failed_due_to_duplicate_num_client: int = 0
    failed_due_to_invalid_phone: int = 0
    failed_due_to_invalid_email: int = 0
    failed_due_to_duplicate_email: int = 0
    failed_due_to_other_errors: int = 0
    other_errors_details: List[str] = Field(default_factory=list)

    @property
    def resolved_records(self) -> int:
        return self.successful_imports + self.failed_imports


@dataclass
class CommitOutcome:
    """Per-batch result handed back by the batch / fallback committers."""
    successful: int = 0
    duplicate_phone: int = 0
    duplicate_email: int = 0
    other_errors: int = 0
    error_messages: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.duplicate_phone + self.duplicate_email + self.other_errors

    @property
    def total(self) -> int:
        return self.successful + self.failed

    @classmethod
    def all_failed(cls, size: int, message: str) -> "CommitOutcome":
        return cls(other_errors=size, error_messages=[message])


_REJECTION_COUNTERS = {
    RejectionReason.MISSING_CLIENT_NUMBER: "failed_due_to_missing_num_client",
    RejectionReason.MISSING_PHONE: "failed_due_to_invalid_phone",
    RejectionReason.INVALID_PHONE: "failed_due_to_invalid_phone",
    RejectionReason.INVALID_EMAIL: "failed_due_to_invalid_email",
    RejectionReason.DUPLICATE_PHONE: "duplicate_phone_numbers",
    RejectionReason.DUPLICATE_CLIENT_NUMBER: "failed_due_to_duplicate_num_client",
}


class ResultAggregator:
    """
    Thread-safe accumulator for an ``ImportResult``.

    ``on_progress`` receives a snapshot after every merged batch outcome. It
    runs outside the counter lock but under a publish lock, and a snapshot
    older than the last one published is dropped, so observers never see
    the resolved count go backwards.
    """

    def __init__(
        self,
        max_error_details: int = DEFAULT_MAX_ERROR_DETAILS,
        on_progress: Optional[Callable[[ImportResult], None]] = None,
    ):
        self._result = ImportResult()
        self._lock = threading.Lock()
        self._max_error_details = max_error_details
        self._on_progress = on_progress
        self._publish_lock = threading.Lock()
        self._published_records = -1

    def count_row(self) -> None:
        with self._lock:
            self._result.total_records += 1

    def add_rejection(self, reason: RejectionReason) -> None:
        with self._lock:
            self._result.failed_imports += 1
            counter = _REJECTION_COUNTERS.get(reason)
            if counter is None:
                self._result.failed_due_to_other_errors += 1
                self._add_error_detail(str(getattr(reason, "value", reason)))
            else:
                setattr(self._result, counter, getattr(self._result, counter) + 1)

    def merge(self, outcome: CommitOutcome) -> None:
        with self._lock:
            result = self._result
            result.successful_imports += outcome.successful
            result.failed_imports += outcome.failed
            result.duplicate_phone_numbers += outcome.duplicate_phone
            result.failed_due_to_duplicate_email += outcome.duplicate_email
            result.failed_due_to_other_errors += outcome.other_errors
            for message in outcome.error_messages:
                self._add_error_detail(message)
            snapshot = result.model_copy(deep=True)

        if self._on_progress is not None:
            self._publish(snapshot)

    def _publish(self, snapshot: ImportResult) -> None:
        with self._publish_lock:
            if snapshot.resolved_records < self._published_records:
                return
            self._published_records = snapshot.resolved_records
            try:
                self._on_progress(snapshot)
            except Exception:
                logger.exception("Progress callback failed; continuing import")

    def snapshot(self) -> ImportResult:
        with self._lock:
            return self._result.model_copy(deep=True)

    def _add_error_detail(self, message: str) -> None:
        details = self._result.other_errors_details
        if message in details or len(details) >= self._max_error_details:
            return
        details.append(message)
