"""Per-request log context: request id, session owner, method and path."""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

log = structlog.get_logger("versionwarden.api")

# Probes are not worth a log line each
_QUIET_PATHS = frozenset({"/health"})


def _request_id(raw: str | None) -> str:
    """Reuse a well-formed incoming X-Request-ID, otherwise mint one."""
    if raw:
        try:
            return str(uuid.UUID(raw))
        except ValueError:
            pass
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id(request.headers.get("x-request-id"))
        quiet = request.url.path in _QUIET_PATHS

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            owner_id=request.headers.get("x-session-owner"),
            method=request.method,
            path=request.url.path,
        ):
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                log.exception("request.failed", duration_ms=_elapsed_ms(start))
                raise
            if not quiet:
                log.info(
                    "request.completed",
                    status_code=response.status_code,
                    duration_ms=_elapsed_ms(start),
                )
            response.headers["X-Request-ID"] = request_id
            return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
