"""
HTTP middleware for the Portfolio CMS: request tracing and response hardening
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

HARDENING_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

PAGE_HEADERS: Dict[str, str] = {
    "X-Frame-Options": "SAMEORIGIN",
    "X-XSS-Protection": "1; mode=block",
}

# Uploaded images are embedded by pages on other origins
UPLOAD_HEADERS: Dict[str, str] = {
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Cache-Control": "public, max-age=86400",
}


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with a short id, logs it and its outcome, and turns
    exceptions that escape the routers into a JSON 500
    """

    def __init__(self, app, expose_errors: bool = False):
        super().__init__(app)
        self.expose_errors = expose_errors

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = new_request_id()
        request.state.request_id = request_id
        client = request.client.host if request.client else "unknown"
        started = time.perf_counter()
        logger.info(f"[{request_id}] --> {request.method} {request.url.path} ({client})")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            logger.exception(f"[{request_id}] {request.method} {request.url.path} raised after {elapsed:.3f}s: {e}")
            response = JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "message": str(e) if self.expose_errors else "Internal server error",
                    "request_id": request_id,
                },
            )
        else:
            elapsed = time.perf_counter() - started
            logger.info(f"[{request_id}] <-- {response.status_code} in {elapsed:.3f}s")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        extra = UPLOAD_HEADERS if request.url.path.startswith("/uploads/") else PAGE_HEADERS
        response.headers.update({**HARDENING_HEADERS, **extra})
        return response
