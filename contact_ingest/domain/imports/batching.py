"""
Batch accumulation and bounded dispatch of batch commits.

Valid candidates are grouped into fixed-size batches in file order. Sealed
batches are handed to worker threads, at most ``max_concurrent`` at a time;
``BatchDispatcher.dispatch`` blocks the producer while every slot is busy,
so memory stays proportional to ``batch_size * max_concurrent`` whatever
the file size.
"""
import contextvars
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple

from .results import CommitOutcome
from .validators import CandidateContact

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
DEFAULT_MAX_CONCURRENT_BATCHES = 3


@dataclass(frozen=True)
class ImportBatch:
    """Sealed, ordered group of valid candidates committed together."""
    sequence: int
    contacts: Tuple[CandidateContact, ...]

    def __len__(self) -> int:
        return len(self.contacts)

    @property
    def client_numbers(self) -> List[str]:
        """Distinct client numbers in first-seen order."""
        return list(dict.fromkeys(contact.client_number for contact in self.contacts))


class BatchAccumulator:
    """Buffers valid candidates and seals them into batches of ``batch_size``."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self._buffer: List[CandidateContact] = []
        self._sealed = 0

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def sealed_batches(self) -> int:
        return self._sealed

    def add(self, candidate: CandidateContact) -> Optional[ImportBatch]:
        """Buffer a candidate; returns a sealed batch once the buffer is full."""
        if not candidate.is_valid:
            raise ValueError(f"Row {candidate.row_number} is invalid and cannot be batched")
        self._buffer.append(candidate)
        if len(self._buffer) >= self.batch_size:
            return self._seal()
        return None

    def flush(self) -> Optional[ImportBatch]:
        """Seal whatever is buffered at end of stream (None when empty)."""
        if not self._buffer:
            return None
        return self._seal()

    def _seal(self) -> ImportBatch:
        self._sealed += 1
        batch = ImportBatch(sequence=self._sealed, contacts=tuple(self._buffer))
        self._buffer = []
        return batch


class ConcurrencyLimiter:
    """Counting gate for in-flight batch commits."""

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT_BATCHES):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.capacity = max_concurrent
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._active = 0
        self._peak = 0

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @property
    def peak(self) -> int:
        """Highest number of simultaneously held slots so far."""
        with self._lock:
            return self._peak

    def acquire(self) -> None:
        """Block until a slot is free."""
        self._slots.acquire()
        with self._lock:
            self._active += 1
            self._peak = max(self._peak, self._active)

    def release(self) -> None:
        with self._lock:
            self._active -= 1
        self._slots.release()


class BatchDispatcher:
    """
    Runs ``commit`` for each dispatched batch on a bounded worker pool.

    Use as a context manager; leaving the block waits for every in-flight
    batch. ``on_resolved`` receives each batch's outcome from the worker
    thread that produced it.
    """

    def __init__(
        self,
        commit: Callable[[ImportBatch], CommitOutcome],
        limiter: ConcurrencyLimiter,
        on_resolved: Callable[[CommitOutcome], None],
        thread_name_prefix: str = "contact-batch",
    ):
        self._commit = commit
        self._limiter = limiter
        self._on_resolved = on_resolved
        self._executor = ThreadPoolExecutor(
            max_workers=limiter.capacity,
            thread_name_prefix=thread_name_prefix,
        )
        self._pending: Set[Future] = set()
        self.dispatched = 0

    def __enter__(self) -> "BatchDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def dispatch(self, batch: ImportBatch) -> None:
        """Hand a sealed batch to a worker, blocking while all slots are busy."""
        self._limiter.acquire()
        try:
            # Workers inherit the producer's context (import job id for log records)
            future = self._executor.submit(contextvars.copy_context().run, self._run, batch)
        except Exception:
            self._limiter.release()
            raise
        self.dispatched += 1
        self._pending = {pending for pending in self._pending if not pending.done()}
        self._pending.add(future)

    def drain(self) -> None:
        """Wait until every dispatched batch has resolved."""
        wait(self._pending)
        self._pending = set()

    def close(self) -> None:
        self.drain()
        self._executor.shutdown(wait=True)

    def _run(self, batch: ImportBatch) -> None:
        started = time.time()
        try:
            try:
                outcome = self._commit(batch)
            except Exception as exc:
                # Committers recover their own failures; this guards the totals
                logger.exception("Batch %d could not be committed", batch.sequence)
                outcome = CommitOutcome.all_failed(len(batch), str(exc) or type(exc).__name__)
            self._on_resolved(outcome)
            logger.info(
                "Batch %d resolved: %d ok, %d failed in %.2fs",
                batch.sequence,
                outcome.successful,
                outcome.failed,
                time.time() - started,
            )
        finally:
            self._limiter.release()
