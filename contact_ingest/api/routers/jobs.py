"""
Endpoints for tracking import job progress.
"""
from fastapi import APIRouter, Depends

from contact_ingest.api.dependencies import get_job_store
from contact_ingest.api.schemas.imports import ErrorResponse, ImportProgressResponse
from contact_ingest.domain.imports.jobs import JobStore

router = APIRouter(prefix="/contact", tags=["import-jobs"])


@router.get(
    "/import-progress/{job_id}",
    response_model=ImportProgressResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_import_progress_endpoint(job_id: str, job_store: JobStore = Depends(get_job_store)):
    job = job_store.get(job_id)
    return ImportProgressResponse.from_job(job)
