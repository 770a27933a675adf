"""Health reporting for the matching service.

The service is healthy when its database answers. The catalog and
training snapshot caches are reported for information only: both start
empty and fill on the first query of each organization.
"""

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Status of one dependency as shown on ``/health``."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_database_health(db: Session) -> ComponentHealth:
    """Round-trip a trivial query through the session.

    Args:
        db: Database session

    Returns:
        ComponentHealth with the query latency, or UNHEALTHY with the error
    """
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(HealthStatus.UNHEALTHY, f"Database error: {e}")

    latency_ms = round((time.perf_counter() - started) * 1000, 2)
    return ComponentHealth(HealthStatus.HEALTHY, "Catalog and training tables reachable", latency_ms)


def check_snapshot_cache(kind: str, cache) -> ComponentHealth:
    """Describe a per-organization snapshot cache.

    Args:
        kind: Label used in the message (``catalog``, ``training``)
        cache: Object exposing ``cached_org_count``, or None before startup
    """
    if cache is None:
        return ComponentHealth(HealthStatus.HEALTHY, f"{kind} snapshot cache not started")
    return ComponentHealth(
        HealthStatus.HEALTHY,
        f"{cache.cached_org_count} {kind} snapshot(s) cached",
    )


def summarize(components: Dict[str, ComponentHealth]) -> Tuple[HealthStatus, dict]:
    """Overall status and the JSON body of ``/health``."""
    overall = HealthStatus.HEALTHY
    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        overall = HealthStatus.UNHEALTHY

    body = {
        "status": overall.value,
        "components": {
            name: {**asdict(component), "status": component.status.value}
            for name, component in components.items()
        },
    }
    return overall, body
