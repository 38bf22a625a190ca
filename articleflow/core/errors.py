"""Error kinds and FastAPI handlers.

Every AppError carries an ErrorKind; HTTP status and the public error code are
derived from the kind, never from message text.
"""

import logging
from enum import Enum
from typing import Iterable, List, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from articleflow.core.logging import get_request_id


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    ALREADY_FINALIZED = "already_finalized"
    UNAVAILABLE = "unavailable"
    SYNC_DEGRADED = "sync_degraded"


ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.ALREADY_FINALIZED: 409,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.SYNC_DEGRADED: 500,
}


class AppError(Exception):
    kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if kind:
            self.kind = kind
        self.request_id = request_id

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.UNAVAILABLE


class ValidationError(AppError, ValueError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, fields: Optional[Iterable[str]] = None, request_id: Optional[str] = None):
        super().__init__(message, request_id=request_id)
        self.fields: List[str] = list(fields or [])


class NotFoundError(AppError, LookupError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(AppError, PermissionError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT


class AlreadyFinalizedError(ConflictError):
    kind = ErrorKind.ALREADY_FINALIZED


class UnavailableError(AppError):
    kind = ErrorKind.UNAVAILABLE


class SyncDegradedError(AppError):
    """External ledger sync failed. Caught at the sync task boundary."""
    kind = ErrorKind.SYNC_DEGRADED


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    if isinstance(exc, ValidationError) and exc.fields:
        payload["error"]["fields"] = exc.fields
    if exc.retryable:
        payload["error"]["retryable"] = True
    logger = logging.getLogger("articleflow")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("articleflow")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("articleflow")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
