"""
Contact import endpoints: synchronous import and background import jobs.
"""
import asyncio
import logging
import os
from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from contact_ingest.api.dependencies import get_importer, get_job_store, spool_upload
from contact_ingest.api.schemas.imports import ErrorResponse, ImportJobAccepted
from contact_ingest.core.errors import ContactImportError, MissingFileError, MissingMappingError
from contact_ingest.domain.imports.jobs import JobStore
from contact_ingest.domain.imports.mapping import ColumnMapping, resolve_column_mapping
from contact_ingest.domain.imports.orchestrator import ContactImporter
from contact_ingest.domain.imports.results import ImportResult
from contact_ingest.domain.imports.sources import detect_source_format

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contact", tags=["contacts"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _require_upload(file: Optional[UploadFile], column_mapping: Optional[str]) -> None:
    """Reject a request that lacks the mapping or the file, mapping first."""
    if not column_mapping or not column_mapping.strip():
        raise MissingMappingError("Column mapping is required")
    if file is None:
        raise MissingFileError()


def _check_request(
    importer: ContactImporter,
    file: Optional[UploadFile],
    column_mapping: Optional[str],
) -> ColumnMapping:
    """Reject a synchronous request before its body is spooled."""
    _require_upload(file, column_mapping)
    mapping = resolve_column_mapping(column_mapping, require_phone=importer.policy.require_phone)
    detect_source_format(file.filename, file.content_type)
    return mapping


def _remove_spooled(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


@router.post("/import", response_model=ImportResult, responses=_ERROR_RESPONSES)
async def import_contacts_endpoint(
    file: Optional[UploadFile] = File(None),
    column_mapping: Optional[str] = Form(None, alias="columnMapping"),
    profile: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    importer: ContactImporter = Depends(get_importer),
):
    """
    Import a CSV or XLSX file of contacts and return the outcome counters.

    The import runs on a worker thread; the request completes when every
    batch has been committed.
    """
    mapping = _check_request(importer, file, column_mapping)
    path = await spool_upload(file)
    try:
        loop = asyncio.get_running_loop()
        with open(path, "rb") as stream:
            result = await loop.run_in_executor(
                None,
                partial(
                    importer.run_import,
                    stream,
                    file_name=file.filename,
                    content_type=file.content_type,
                    column_mapping=mapping,
                    profile=profile,
                    status=status,
                ),
            )
        return result
    except ContactImportError:
        raise
    except Exception as e:
        logger.exception("Contact import of '%s' failed", file.filename)
        raise ContactImportError(f"Error processing file: {str(e)}") from e
    finally:
        _remove_spooled(path)


@router.post(
    "/import-async",
    response_model=ImportJobAccepted,
    status_code=202,
    responses=_ERROR_RESPONSES,
)
async def import_contacts_async_endpoint(
    file: Optional[UploadFile] = File(None),
    column_mapping: Optional[str] = Form(None, alias="columnMapping"),
    profile: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    importer: ContactImporter = Depends(get_importer),
    job_store: JobStore = Depends(get_job_store),
):
    """
    Start a background import and return its job id right away.

    Poll ``/contact/import-progress/{jobId}`` for progress and the final counters.
    An unrecognized format or an incomplete mapping fails the job rather
    than the request.
    """
    _require_upload(file, column_mapping)
    path = await spool_upload(file)
    try:
        job_id = importer.start_import_job(
            job_store,
            path,
            file_name=file.filename,
            content_type=file.content_type,
            column_mapping=column_mapping,
            profile=profile,
            status=status,
        )
    except Exception:
        _remove_spooled(path)
        raise
    return ImportJobAccepted(job_id=job_id)
