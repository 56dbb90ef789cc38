from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./contacts.db"
    log_level: str = "INFO"
    upload_max_file_size_mb: int = 500

    # Batch pipeline
    import_batch_size: int = 500
    import_max_concurrent_batches: int = 3
    import_csv_chunk_rows: int = 5000
    import_csv_sniff_bytes: int = 64 * 1024
    import_max_error_details: int = 100  # Cap for the deduplicated other-error list

    # Form defaults
    import_default_profile: str = "imported"
    import_default_status: str = "active"

    # Row validation policy (all relaxed by default)
    import_require_phone_mapping: bool = False
    import_check_duplicate_phone: bool = False
    import_check_duplicate_client_number: bool = False
    import_validate_email_format: bool = False
    import_validate_phone_format: bool = False

    # Async job tracking
    import_job_retention_seconds: int = 60 * 60
    import_job_sweep_interval_seconds: int = 300
    import_job_workers: int = 4

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
