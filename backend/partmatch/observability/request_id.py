"""Per-request correlation IDs.

The ID lives in a context variable. Batch resolution runs its worker
threads inside a copy of the caller's context, so their log lines carry
the request's ID as well.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

NO_REQUEST_ID = "-"

# Caller-supplied IDs end up verbatim in log lines
_ACCEPTED_ID = re.compile(r"[A-Za-z0-9._:\-]{1,128}")


def generate_request_id() -> str:
    return uuid.uuid4().hex


def accept_request_id(header_value: Optional[str]) -> str:
    """Reuse a caller's X-Request-ID when it is short and plain, else mint one."""
    if header_value and _ACCEPTED_ID.fullmatch(header_value):
        return header_value
    return generate_request_id()


def get_request_id() -> str:
    return request_id_var.get() or NO_REQUEST_ID
