"""ServiceError and request validation failures rendered as JSON error bodies."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from versionwarden.services import (
    ConflictError,
    NotFoundError,
    RemoteExecutionError,
    ServiceError,
    ValidationError,
)

log = structlog.get_logger("versionwarden.api")

_STATUS_MAP: dict[type[ServiceError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 422,
    RemoteExecutionError: 502,
}

# seconds a client should wait before repeating a rejected overlapping call
CONFLICT_RETRY_AFTER = 1


def status_for(exc: ServiceError) -> int:
    """HTTP status of the nearest mapped class in *exc*'s MRO (500 if none)."""
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


async def _service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    status = status_for(exc)
    headers = None
    if status == 409:
        headers = {"Retry-After": str(CONFLICT_RETRY_AFTER)}
    if status >= 500:
        log.warning("request.service_error", error=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
        headers=headers,
    )


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"detail": "; ".join(messages), "error": "RequestValidationError"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
