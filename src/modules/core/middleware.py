"""Request correlation.

Every request carries a correlation id: the client's ``X-Request-ID`` when
it sends a usable one, a fresh UUID4 otherwise.  The id is bound into
structlog's context for the request's log lines, handed to the outbox
publish task so the worker's log lines carry it too, and echoed back in
the ``X-Request-ID`` response header.
"""

import time
import uuid
from contextvars import ContextVar
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

MAX_REQUEST_ID_LENGTH = 128

logger = structlog.get_logger(__name__)


def _incoming_request_id(request: HttpRequest) -> str:
    value = request.META.get("HTTP_X_REQUEST_ID", "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LENGTH or not value.isprintable():
        return ""
    return value


class CorrelationIdMiddleware:
    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = _incoming_request_id(request) or str(uuid.uuid4())
        correlation_id_var.set(cid)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)

        started = time.monotonic()
        logger.info("request.started", method=request.method, path=request.path)
        response = self.get_response(request)
        logger.info(
            "request.finished",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )

        response["X-Request-ID"] = cid
        return response
