"""Operational endpoints: Prometheus scrape, health and readiness."""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from ..database import get_db
from .health import HealthStatus, check_database_health, check_snapshot_cache, summarize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Resolution, feedback and import counters in Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    summary="Service health",
    description="Database reachability plus the size of the catalog and training snapshot caches",
)
def health_check(request: Request, db: Session = Depends(get_db)):
    """Report every component; 503 when the database is unreachable.

    Args:
        request: Incoming request (snapshot caches live on application state)
        db: Database session
    """
    state = request.app.state
    overall, body = summarize({
        "database": check_database_health(db),
        "catalog_cache": check_snapshot_cache("catalog", getattr(state, "catalog_provider", None)),
        "training_cache": check_snapshot_cache("training", getattr(state, "training_corpus", None)),
    })

    if overall == HealthStatus.UNHEALTHY:
        logger.warning(f"Health check failed: {body['components']}")
        return JSONResponse(content=body, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return body


@router.get(
    "/ready",
    summary="Readiness",
    description="Ready once the catalog and training tables can be queried",
)
def readiness_check(db: Session = Depends(get_db)):
    database = check_database_health(db)
    if database.status != HealthStatus.HEALTHY:
        return JSONResponse(
            content={"status": "not_ready", "message": database.message},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return {"status": "ready", "message": "Accepting match queries"}
