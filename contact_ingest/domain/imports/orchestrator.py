"""
Contact import orchestration.

Wires the source adapter, column mapping, row validation, batching and
commit stages into one pipeline, exposed two ways:

* ``ContactImporter.run_import`` runs inline and returns the final
  ``ImportResult``.
* ``ContactImporter.start_import_job`` registers a job and runs the same
  pipeline on a background worker that outlives the request, reporting
  into a ``JobStore``.
"""
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Callable, Mapping, Optional, Union

from contact_ingest.core.config import settings
from contact_ingest.core.errors import ContactImportError
from contact_ingest.core.logging_config import import_job_context
from contact_ingest.db.session import get_session_local
from contact_ingest.domain.stores import (
    ClientStore,
    ContactStore,
    SessionFactory,
    SqlClientStore,
    SqlContactStore,
    transaction_scope,
)
from .batching import BatchAccumulator, BatchDispatcher, ConcurrencyLimiter
from .committer import FallbackStrategy, PerRecordFallback, TransactionalBatchCommitter
from .jobs import JobStore
from .mapping import ColumnMapping, resolve_column_mapping
from .results import ImportResult, ResultAggregator
from .sources import detect_source_format, open_row_source
from .validators import RowValidator, ValidationPolicy

logger = logging.getLogger(__name__)

MappingInput = Union[None, str, bytes, Mapping[str, Any], ColumnMapping]
ProgressCallback = Callable[[ImportResult], None]

_job_executor: Optional[ThreadPoolExecutor] = None
_job_executor_lock = threading.Lock()


def get_job_executor() -> ThreadPoolExecutor:
    """Process-wide pool running background import jobs."""
    global _job_executor
    with _job_executor_lock:
        if _job_executor is None:
            _job_executor = ThreadPoolExecutor(
                max_workers=max(1, settings.import_job_workers),
                thread_name_prefix="contact-import-job",
            )
        return _job_executor


def shutdown_job_executor(wait: bool = True) -> None:
    global _job_executor
    with _job_executor_lock:
        executor, _job_executor = _job_executor, None
    if executor is not None:
        executor.shutdown(wait=wait)


class ContactImporter:
    """
    Bulk contact import pipeline.

    Every collaborator is injectable; the defaults read from ``settings`` and
    use the SQL client/contact stores on the application's database.
    """

    def __init__(
        self,
        *,
        session_factory: Optional[SessionFactory] = None,
        client_store: Optional[ClientStore] = None,
        contact_store: Optional[ContactStore] = None,
        fallback: Optional[FallbackStrategy] = None,
        policy: Optional[ValidationPolicy] = None,
        batch_size: Optional[int] = None,
        max_concurrent_batches: Optional[int] = None,
        max_error_details: Optional[int] = None,
        csv_chunk_rows: Optional[int] = None,
        csv_sniff_bytes: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.client_store = client_store or SqlClientStore()
        self.contact_store = contact_store or SqlContactStore()
        self._fallback = fallback
        self.policy = policy or ValidationPolicy.from_settings()
        self.batch_size = batch_size or settings.import_batch_size
        self.max_concurrent_batches = max_concurrent_batches or settings.import_max_concurrent_batches
        self.max_error_details = max_error_details or settings.import_max_error_details
        self.csv_chunk_rows = csv_chunk_rows or settings.import_csv_chunk_rows
        self.csv_sniff_bytes = csv_sniff_bytes or settings.import_csv_sniff_bytes

    @property
    def session_factory(self) -> SessionFactory:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    def build_committer(self) -> TransactionalBatchCommitter:
        fallback = self._fallback or PerRecordFallback(
            self.client_store, self.contact_store, self.session_factory
        )
        return TransactionalBatchCommitter(
            self.client_store,
            self.contact_store,
            self.session_factory,
            fallback=fallback,
        )

    def _known_phone_numbers(self):
        with transaction_scope(self.session_factory) as session:
            return self.contact_store.existing_phone_numbers(session)

    def run_import(
        self,
        stream: BinaryIO,
        *,
        file_name: Optional[str],
        content_type: Optional[str] = None,
        column_mapping: MappingInput,
        profile: Optional[str] = None,
        status: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """
        Import every row of ``stream`` and return the outcome counters.

        Format and mapping problems raise before any row is processed;
        row, batch and record failures are only counted.

        Raises:
            InvalidFormatError: unrecognized or unreadable file
            MissingMappingError: mapping absent, unparseable or incomplete
        """
        started = time.time()
        source_format = detect_source_format(file_name, content_type)
        mapping = resolve_column_mapping(column_mapping, require_phone=self.policy.require_phone)
        profile = profile or settings.import_default_profile
        status = status or settings.import_default_status

        logger.info(
            "Starting contact import of '%s' (%s, batch=%d, concurrency=%d)",
            file_name,
            source_format.value,
            self.batch_size,
            self.max_concurrent_batches,
        )
        rows = open_row_source(
            stream,
            source_format,
            chunk_rows=self.csv_chunk_rows,
            sniff_bytes=self.csv_sniff_bytes,
        )

        validator = RowValidator(
            mapping,
            policy=self.policy,
            default_profile=profile,
            default_status=status,
            known_phone_numbers=self._known_phone_numbers() if self.policy.check_duplicate_phone else (),
        )
        aggregator = ResultAggregator(self.max_error_details, on_progress=on_progress)
        accumulator = BatchAccumulator(self.batch_size)
        limiter = ConcurrencyLimiter(self.max_concurrent_batches)
        committer = self.build_committer()

        with BatchDispatcher(committer.commit, limiter, on_resolved=aggregator.merge) as dispatcher:
            for row_number, raw_row in enumerate(rows, start=1):
                aggregator.count_row()
                candidate = validator.validate(raw_row, row_number)
                if not candidate.is_valid:
                    aggregator.add_rejection(candidate.rejection)
                    continue
                batch = accumulator.add(candidate)
                if batch is not None:
                    dispatcher.dispatch(batch)

            final_batch = accumulator.flush()
            if final_batch is not None:
                dispatcher.dispatch(final_batch)

        result = aggregator.snapshot()
        logger.info(
            "Contact import of '%s' finished in %.2fs: %d rows, %d imported, %d failed (%d batches)",
            file_name,
            time.time() - started,
            result.total_records,
            result.successful_imports,
            result.failed_imports,
            accumulator.sealed_batches,
        )
        return result

    def start_import_job(
        self,
        job_store: JobStore,
        file_path: str,
        *,
        file_name: Optional[str],
        content_type: Optional[str] = None,
        column_mapping: MappingInput,
        profile: Optional[str] = None,
        status: Optional[str] = None,
        delete_file: bool = True,
    ) -> str:
        """
        Create a job and run the import of ``file_path`` in the background.

        Returns the job id immediately. The file is removed when the run ends
        unless ``delete_file`` is False.
        """
        job_id = job_store.create()
        get_job_executor().submit(
            self.run_import_job,
            job_store,
            job_id,
            file_path,
            file_name=file_name,
            content_type=content_type,
            column_mapping=column_mapping,
            profile=profile,
            status=status,
            delete_file=delete_file,
        )
        return job_id

    def run_import_job(
        self,
        job_store: JobStore,
        job_id: str,
        file_path: str,
        *,
        file_name: Optional[str],
        content_type: Optional[str] = None,
        column_mapping: MappingInput,
        profile: Optional[str] = None,
        status: Optional[str] = None,
        delete_file: bool = True,
    ) -> None:
        """Background body of an import job. Never raises."""

        def _report_progress(snapshot: ImportResult) -> None:
            job_store.update(job_id, result=snapshot, processed_records=snapshot.resolved_records)

        with import_job_context(job_id):
            try:
                job_store.mark_processing(job_id)
                with open(file_path, "rb") as stream:
                    result = self.run_import(
                        stream,
                        file_name=file_name,
                        content_type=content_type,
                        column_mapping=column_mapping,
                        profile=profile,
                        status=status,
                        on_progress=_report_progress,
                    )
                job_store.mark_completed(job_id, result)
            except ContactImportError as exc:
                logger.warning("Import job %s failed: %s", job_id, exc.message)
                job_store.mark_failed(job_id, exc.message)
            except Exception as exc:
                logger.exception("Import job %s crashed", job_id)
                job_store.mark_failed(job_id, f"Error processing file: {exc}")
            finally:
                if delete_file:
                    _remove_quietly(file_path)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove spooled upload %s: %s", path, exc)
