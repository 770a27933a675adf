"""Request correlation and access logging for the API."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .request_id import accept_request_id, request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the duration of a request and log its outcome.

    One access line is written per request, tagged with the tenant from
    ``X-Org-ID`` so match traffic can be followed per organization. The
    ID is echoed back in the ``X-Request-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(request_id)
        fields = {
            "method": request.method,
            "path": request.url.path,
            "org_id": request.headers.get("X-Org-ID"),
        }
        started = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"{request.method} {request.url.path} raised {type(e).__name__}",
                    extra={**fields, "error_type": type(e).__name__, "duration_ms": _elapsed_ms(started)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={**fields, "status_code": response.status_code, "duration_ms": _elapsed_ms(started)},
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
