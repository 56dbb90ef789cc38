"""
Shared dependencies and state for the API.

Holds the process-wide job store and importer, plus the helper that spools
uploads to disk so the import can outlive the request.
"""
import logging
import os
import tempfile
from typing import Optional

from fastapi import UploadFile

from contact_ingest.core.config import settings
from contact_ingest.core.errors import FileTooLargeError
from contact_ingest.domain.imports.jobs import InMemoryJobStore, JobStore
from contact_ingest.domain.imports.orchestrator import ContactImporter

logger = logging.getLogger(__name__)

UPLOAD_READ_CHUNK_BYTES = 1024 * 1024

# Global job storage (swap for an external cache when running several workers)
job_store: JobStore = InMemoryJobStore(retention_seconds=settings.import_job_retention_seconds)

_importer: Optional[ContactImporter] = None


def get_job_store() -> JobStore:
    return job_store


def get_importer() -> ContactImporter:
    global _importer
    if _importer is None:
        _importer = ContactImporter()
    return _importer


def upload_limit_bytes() -> int:
    return settings.upload_max_file_size_mb * 1024 * 1024


async def spool_upload(upload: UploadFile, max_bytes: Optional[int] = None) -> str:
    """
    Copy an upload into a named temporary file and return its path.

    The caller owns the file and must remove it.

    Raises:
        FileTooLargeError: if the upload exceeds ``max_bytes``; the partial
            file is removed first
    """
    limit = max_bytes if max_bytes is not None else upload_limit_bytes()
    suffix = os.path.splitext(upload.filename or "")[1]
    spooled = tempfile.NamedTemporaryFile(prefix="contact-import-", suffix=suffix, delete=False)
    size = 0
    try:
        with spooled:
            while True:
                chunk = await upload.read(UPLOAD_READ_CHUNK_BYTES)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise FileTooLargeError(size, limit)
                spooled.write(chunk)
    except BaseException:
        os.remove(spooled.name)
        raise

    logger.info("Spooled upload '%s' (%d bytes) to %s", upload.filename, size, spooled.name)
    return spooled.name
