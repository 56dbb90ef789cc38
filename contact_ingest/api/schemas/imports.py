from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from contact_ingest.domain.imports.jobs import ImportJob, JobStatus
from contact_ingest.domain.imports.results import ImportResult


class ImportJobAccepted(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    message: str = "Import started. Use the jobId to track progress."


class ErrorResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    error_kind: str


class ImportProgressResponse(ImportResult):
    """Poll view of an import job: the live counters plus job bookkeeping."""

    job_id: str
    status: JobStatus
    processed_records: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def from_job(cls, job: ImportJob) -> "ImportProgressResponse":
        return cls(
            **job.result.model_dump(),
            job_id=job.job_id,
            status=job.status,
            processed_records=job.processed_records,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error_message=job.error_message,
        )
