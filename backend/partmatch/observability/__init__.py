"""Logging, Prometheus metrics, request correlation and health reporting for partmatch."""

from .health import ComponentHealth, HealthStatus
from .logging_config import configure_logging
from .request_id import get_request_id, request_id_var

__all__ = [
    "ComponentHealth",
    "HealthStatus",
    "configure_logging",
    "get_request_id",
    "request_id_var",
]
