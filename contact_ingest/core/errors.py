"""
Exceptions raised by the contact import pipeline.

Each exception carries the ``error_kind`` reported to API callers and the
HTTP status the API layer should answer with.
"""
from typing import Optional


class ContactImportError(Exception):
    """Base class for errors that abort an import or a lookup."""

    error_kind = "InternalError"
    status_code = 500

    def __init__(self, message: Optional[str] = None):
        self.message = message or "Import failed"
        super().__init__(self.message)


class InvalidFormatError(ContactImportError):
    """Raised when the uploaded file cannot be read as CSV or a spreadsheet."""

    error_kind = "InvalidFormat"
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Invalid file format. Please upload a CSV or XLSX file")


class MissingMappingError(ContactImportError):
    """Raised when the column mapping is unparseable or lacks a mandatory field."""

    error_kind = "MissingMapping"
    status_code = 400


class MissingFileError(ContactImportError):
    error_kind = "MissingFile"
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "No file uploaded")


class FileTooLargeError(ContactImportError):
    error_kind = "FileTooLarge"
    status_code = 413

    def __init__(self, size_bytes: int, limit_bytes: int):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"File is {size_bytes} bytes; the upload limit is {limit_bytes // (1024 * 1024)} MB"
        )


class JobNotFoundError(ContactImportError):
    """Raised when polling a job id that was never created or has been purged."""

    error_kind = "JobNotFound"
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")
