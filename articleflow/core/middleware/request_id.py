"""
Request correlation.

A caller-supplied x-request-id is kept when it is a short token; anything
else (missing, too long, spaces or control characters) is replaced by a fresh
uuid4. The id is bound to the logging context for the request, stored on
request.state for the error handlers and echoed on the response.
"""
import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from articleflow.core.logging import latency_bucket_ms, log_event, request_id_ctx_var

REQUEST_ID_HEADER = "x-request-id"
USER_ID_HEADER = "x-user-id"

_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._:\-]{1,128}")


def resolve_request_id(incoming: Optional[str]) -> str:
    if incoming and _REQUEST_ID_PATTERN.fullmatch(incoming):
        return incoming
    return str(uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next):
        rid = resolve_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            log_event(
                "info",
                "request.complete",
                request_id=rid,
                user_id=request.headers.get(USER_ID_HEADER),
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
