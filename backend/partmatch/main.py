"""partmatch - Main FastAPI Application

Hybrid matching service for free-text line items against a product catalog.

This module creates and configures the main FastAPI application, including:
- Matching and feedback API routers
- Middleware (request ID correlation, CORS)
- Exception handlers (matcher errors, validation, database)
- Health and observability endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .database import SessionLocal, init_db
from .feedback.endpoints import router as feedback_router
from .infrastructure.repositories import SqlCatalogProvider, SqlTrainingStore
from .matching.training_index import TrainingCorpus
from .matching.ports import DependencyUnavailableError, MatcherError, UnknownCatalogEntryError
from .matching.router import router as matching_router
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router

settings = get_settings()

# Configure logging
configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    - Startup: create missing tables, build the shared catalog / training adapters
    - Shutdown: drop cached catalog and training snapshots
    """
    logger.info("partmatch API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    init_db()
    app.state.catalog_provider = SqlCatalogProvider(SessionLocal, settings)
    app.state.training_store = SqlTrainingStore(SessionLocal)
    app.state.training_corpus = TrainingCorpus(app.state.training_store, settings)

    yield

    app.state.catalog_provider.invalidate()
    app.state.training_corpus.invalidate()
    logger.info("partmatch API shutting down...")


# Create FastAPI application
app = FastAPI(
    title="partmatch API",
    description="Tiered hybrid matching of line-item text to catalog entries",
    version="0.1.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

# Request ID Middleware (must be first for proper correlation)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(UnknownCatalogEntryError)
async def unknown_entry_exception_handler(
    request: Request,
    exc: UnknownCatalogEntryError
) -> JSONResponse:
    """Decision or alias referenced an entry outside the caller's catalog."""
    logger.warning(f"Unknown catalog entry on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "unknown_catalog_entry",
            "message": str(exc),
        },
    )


@app.exception_handler(DependencyUnavailableError)
async def dependency_unavailable_exception_handler(
    request: Request,
    exc: DependencyUnavailableError
) -> JSONResponse:
    """Catalog or training store unreadable; never answered with partial results."""
    logger.error(f"Dependency unavailable on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "dependency_unavailable",
            "message": "Catalog or training data is temporarily unavailable. Please try again later.",
        },
    )


@app.exception_handler(MatcherError)
async def matcher_exception_handler(
    request: Request,
    exc: MatcherError
) -> JSONResponse:
    logger.error(f"Matching error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "matching_error",
            "message": "Matching failed. Please try again later.",
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors.

    Returns a structured error response with field-level details.
    """
    logger.warning(f"Validation error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Handle database errors.

    Logs the full error but returns a generic message to prevent
    information leakage.
    """
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "A database error occurred. Please try again later.",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle uncaught exceptions.

    Full details are logged but not exposed to the client.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSON cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

# Observability (health, metrics, ready)
app.include_router(observability_router)

# Matching
app.include_router(matching_router)

# Feedback & Learning
app.include_router(feedback_router)


# =============================================================================
# ROOT ENDPOINTS
# =============================================================================

@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint - API information."""
    return {
        "name": "partmatch API",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs" if settings.ENVIRONMENT != "production" else None,
    }


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "partmatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
