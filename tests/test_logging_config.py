import logging
import threading

from contact_ingest.core.logging_config import ImportJobFilter, import_job_context
from contact_ingest.domain.imports.batching import BatchDispatcher, ConcurrencyLimiter, ImportBatch
from contact_ingest.domain.imports.results import CommitOutcome


def _record():
    return logging.LogRecord("contact_ingest.test", logging.INFO, __file__, 1, "hello", None, None)


def test_records_are_tagged_with_the_active_job():
    job_filter = ImportJobFilter()

    outside = _record()
    job_filter.filter(outside)
    with import_job_context("import_1_abcdefghi"):
        inside = _record()
        job_filter.filter(inside)

    assert outside.job_id == "-"
    assert inside.job_id == "import_1_abcdefghi"


def test_batch_workers_inherit_the_job_context():
    job_filter = ImportJobFilter()
    seen = []
    lock = threading.Lock()

    def commit(batch):
        record = _record()
        job_filter.filter(record)
        with lock:
            seen.append(record.job_id)
        return CommitOutcome()

    with import_job_context("import_2_abcdefghi"):
        with BatchDispatcher(commit, ConcurrencyLimiter(2), on_resolved=lambda outcome: None) as dispatcher:
            for sequence in range(1, 4):
                dispatcher.dispatch(ImportBatch(sequence, ()))

    assert seen == ["import_2_abcdefghi"] * 3
