"""
FastAPI application for the EHR platform core.

Mounts the platform history endpoints under the FHIR base path and renders
every error as an OperationOutcome.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ehr_platform import __version__
from ehr_platform.core import configure_logging, get_logger, get_correlation_id, CorrelationIdMiddleware
from ehr_platform.core.context import CORRELATION_HEADER
from ehr_platform.core.config import HistoryBackend, get_settings
from ehr_platform.exceptions import EHRPlatformException, http_status_for, is_recoverable
from ehr_platform.routers import history
from ehr_platform.services.fhir.outcome import error_outcome, outcome_for_exception
from ehr_platform.services.postgres_service import get_pg, close_pg

configure_logging()
logger = get_logger(__name__)

settings = get_settings()

FHIR_JSON = "application/fhir+json"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("startup", history_backend=settings.history_backend.value, env=settings.env)

    if settings.history_backend == HistoryBackend.POSTGRES:
        pg = await get_pg()
        if pg.is_available:
            logger.info("postgres_ready")
        else:
            logger.warning("postgres_unavailable")

    yield

    logger.info("shutdown")
    await close_pg()


app = FastAPI(
    title="EHR Platform API",
    description="Resource versioning, document patching and search core.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "If-Match", "X-Correlation-ID"],
    expose_headers=["ETag", "Last-Modified", "Location", "X-Correlation-ID"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(history.router, prefix=settings.fhir_base_url, tags=["History"])


# ============================================================
# Exception handlers
# ============================================================

@app.exception_handler(EHRPlatformException)
async def platform_exception_handler(request: Request, exc: EHRPlatformException):
    status = http_status_for(exc, if_match="if-match" in request.headers)
    log = logger.warning if status >= 500 else logger.info
    log(
        "request_failed",
        error_code=exc.error_code,
        kind=exc.kind.value,
        status=status,
        recoverable=is_recoverable(exc.error_code),
    )
    return JSONResponse(
        status_code=status,
        content=outcome_for_exception(exc).to_dict(),
        media_type=FHIR_JSON,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content=error_outcome(messages, code="invalid").to_dict(),
        media_type=FHIR_JSON,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error("unhandled_exception", error=str(exc), exc_info=True)
    outcome = outcome_for_exception(exc, include_details=not settings.is_production)
    # ServerErrorMiddleware sits outside CorrelationIdMiddleware
    correlation_id = get_correlation_id() or request.headers.get(CORRELATION_HEADER, "")
    return JSONResponse(
        status_code=500,
        content=outcome.to_dict(),
        media_type=FHIR_JSON,
        headers={CORRELATION_HEADER: correlation_id} if correlation_id else None,
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus history backend availability."""
    backend = settings.history_backend
    available = True
    if backend == HistoryBackend.POSTGRES:
        available = (await get_pg()).is_available
    return JSONResponse(
        status_code=200 if available else 503,
        content={
            "status": "healthy" if available else "unhealthy",
            "history_backend": backend.value,
            "version": __version__,
        },
    )
