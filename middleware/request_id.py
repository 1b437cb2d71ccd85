"""
Request ID middleware for correlating every log line of one request.

The id is taken from the client's ``X-Request-ID`` header when it is a short
token of safe characters, otherwise generated. It is stored on
``request.state``, echoed in the response header and stamped onto every log
record emitted while the request runs.
"""

import logging
import re
import time
import uuid
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# Client ids end up in every log line
_CLIENT_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,64}")


def _to_base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_request_id() -> str:
    """``req_<base36 epoch ms>_<8 hex chars>``"""
    return f"req_{_to_base36(int(time.time() * 1000))}_{uuid.uuid4().hex[:8]}"


def _install_record_factory():
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.request_id = _request_id.get()
        return record

    logging.setLogRecordFactory(record_factory)


_install_record_factory()


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        client_id = request.headers.get("X-Request-ID")
        if client_id and _CLIENT_ID_PATTERN.fullmatch(client_id):
            request_id = client_id
        else:
            request_id = generate_request_id()

        request.state.request_id = request_id
        request.state.start_time = time.time()

        token = _request_id.set(request_id)
        try:
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _request_id.reset(token)


def get_request_id(request: Request) -> str:
    """
    Request ID of the current request, or "unknown" outside the middleware.

    Usage in route handlers:
        req_id = get_request_id(request)
    """
    return getattr(request.state, "request_id", "unknown")
