"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers the contact import routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.dependencies import job_store
from .api.routers import imports, jobs
from .core.config import settings
from .core.errors import ContactImportError
from .core.logging_config import configure_logging
from .domain.imports.jobs import JobSweeper
from .domain.imports.orchestrator import shutdown_job_executor

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
    else:
        from .db.models import create_contact_tables

        try:
            create_contact_tables()
            logger.info("clients and contacts tables ready")
        except Exception:
            logger.exception("Failed to initialize database tables")
            raise  # Re-raise to prevent app from starting with broken database

    sweeper = JobSweeper(job_store, settings.import_job_sweep_interval_seconds)
    sweeper.start()

    yield  # Application runs here

    sweeper.stop()
    shutdown_job_executor(wait=False)


app = FastAPI(
    title="Contact Ingest API",
    version="1.0.0",
    description="Bulk import of contacts and their clients from CSV and XLSX files",
    lifespan=lifespan,
)

# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ContactImportError)
async def contact_import_error_handler(request: Request, exc: ContactImportError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "errorKind": exc.error_kind},
    )


app.include_router(imports.router)
app.include_router(jobs.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Contact Ingest API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "contact-ingest-api",
    }
