"""
Error types and FastAPI exception handlers for the Portfolio CMS

Every error leaves the API in one envelope:
``{"success": false, "message": ..., "error": {code, category, severity, ...}}``
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error classes; each one answers with a single HTTP status"""
    VALIDATION = "validation"
    UPLOAD = "upload"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    UPLOAD_TIMEOUT = "upload_timeout"
    RATE_LIMIT = "rate_limit"
    DATABASE = "database"
    SYSTEM = "system"


HTTP_STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.UPLOAD: 400,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.UPLOAD_TIMEOUT: 408,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.SYSTEM: 500,
    ErrorCategory.DATABASE: 503,
}

# First category listed wins for a shared status
CATEGORY_BY_HTTP_STATUS: Dict[int, ErrorCategory] = {
    status: category for category, status in reversed(list(HTTP_STATUS_BY_CATEGORY.items()))
}


class ErrorDetails(BaseModel):
    """The ``error`` member of an error response"""
    code: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    suggestions: List[str] = Field(default_factory=list)
    recoverable: bool = True
    retry_after_seconds: Optional[int] = None


class PortfolioException(Exception):
    """
    Base class for errors reported to API clients

    Subclasses fix code, category, severity, suggestions and retry hint at
    class level; each raise supplies the message and its own context. Any
    ErrorDetails field can still be overridden per instance by keyword.
    """

    code: ClassVar[str] = "INTERNAL_ERROR"
    category: ClassVar[ErrorCategory] = ErrorCategory.SYSTEM
    severity: ClassVar[ErrorSeverity] = ErrorSeverity.MEDIUM
    suggestions: ClassVar[List[str]] = []
    retry_after_seconds: ClassVar[Optional[int]] = None

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None, **overrides: Any):
        super().__init__(message)
        fields: Dict[str, Any] = {
            "code": self.code,
            "category": self.category,
            "severity": self.severity,
            "suggestions": list(self.suggestions),
            "retry_after_seconds": self.retry_after_seconds,
        }
        fields.update(overrides)
        self.details = ErrorDetails(message=message, context=context or {}, **fields)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CATEGORY.get(self.details.category, 500)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.details.message,
            "error": self.details.model_dump(mode="json"),
        }

    def log_extra(self) -> Dict[str, Any]:
        """Fields for ``logger.*(extra=...)``, prefixed to stay clear of LogRecord attributes"""
        fields = self.details.model_dump(
            mode="json",
            include={"code", "message", "category", "severity", "context", "recoverable"},
        )
        return {f"error_{key}": value for key, value in fields.items()}

    def response_headers(self) -> Dict[str, str]:
        headers = {
            "X-Error-Code": self.details.code,
            "X-Error-Category": self.details.category.value,
        }
        if self.details.correlation_id:
            headers["X-Correlation-Id"] = self.details.correlation_id
        if self.details.retry_after_seconds:
            headers["Retry-After"] = str(self.details.retry_after_seconds)
        return headers

    def to_response(self, status_code: Optional[int] = None) -> JSONResponse:
        return JSONResponse(
            status_code=status_code or self.status_code,
            content=self.to_dict(),
            headers=self.response_headers(),
        )


# ===================================================================
# Request errors
# ===================================================================

class ValidationException(PortfolioException):
    """Raised when input validation fails"""
    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    suggestions = ["Check input format and try again"]

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, **overrides: Any):
        super().__init__(message, {"field": field, "value": None if value is None else str(value)}, **overrides)


class AuthenticationException(PortfolioException):
    """Raised when a request carries no valid credentials"""
    code = "AUTHENTICATION_ERROR"
    category = ErrorCategory.AUTHENTICATION
    severity = ErrorSeverity.LOW
    suggestions = ["Log in and send the token as 'Authorization: Bearer <token>'"]

    def __init__(self, message: str = "Authentication required", **overrides: Any):
        super().__init__(message, **overrides)


class AuthorizationException(PortfolioException):
    """Raised when an authenticated user lacks the required role or the account is disabled"""
    code = "AUTHORIZATION_ERROR"
    category = ErrorCategory.AUTHORIZATION
    severity = ErrorSeverity.LOW

    def __init__(self, message: str = "Permission denied", required_role: Optional[str] = None, **overrides: Any):
        super().__init__(message, {"required_role": required_role}, **overrides)


class NotFoundException(PortfolioException):
    """Raised when a requested entity does not exist"""
    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW

    def __init__(self, resource: str, identifier: Any = None, message: Optional[str] = None, **overrides: Any):
        super().__init__(
            message or f"{resource} not found",
            {"resource": resource, "identifier": None if identifier is None else str(identifier)},
            **overrides,
        )


# ===================================================================
# Upload errors
# ===================================================================

class UploadException(PortfolioException):
    """Raised when an uploaded file is rejected"""
    code = "UPLOAD_ERROR"
    category = ErrorCategory.UPLOAD
    severity = ErrorSeverity.LOW
    suggestions = ["Only jpeg, jpg, png, gif and webp images are accepted"]

    def __init__(self, message: str, filename: Optional[str] = None, **overrides: Any):
        super().__init__(message, {"filename": filename}, **overrides)


class UploadTimeoutException(PortfolioException):
    """Raised when processing an upload request runs past its time limit"""
    code = "UPLOAD_TIMEOUT"
    category = ErrorCategory.UPLOAD_TIMEOUT
    suggestions = ["Upload fewer or smaller files"]

    def __init__(self, timeout_seconds: float, **overrides: Any):
        super().__init__(
            f"File processing timed out after {timeout_seconds:g}s",
            {"timeout_seconds": timeout_seconds},
            **overrides,
        )


class TooManyUploadsException(PortfolioException):
    """Raised when the concurrent upload ceiling is already reached"""
    code = "TOO_MANY_UPLOADS"
    category = ErrorCategory.RATE_LIMIT
    retry_after_seconds = 5

    def __init__(self, limit: int, **overrides: Any):
        super().__init__(
            "Too many concurrent uploads, please try again later",
            {"max_concurrent_uploads": limit},
            **overrides,
        )


# ===================================================================
# Backend errors
# ===================================================================

class DatabaseException(PortfolioException):
    """Raised when the persistence backend fails or is unavailable"""
    code = "DATABASE_ERROR"
    category = ErrorCategory.DATABASE
    severity = ErrorSeverity.HIGH
    suggestions = ["Check database connectivity"]
    retry_after_seconds = 10

    def __init__(self, message: str, operation: str, table: Optional[str] = None, **overrides: Any):
        super().__init__(message, {"operation": operation, "table": table}, **overrides)


# ===================================================================
# Handlers
# ===================================================================

async def portfolio_exception_handler(request: Request, exc: PortfolioException) -> JSONResponse:
    log = logger.error if exc.details.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logger.warning
    log(
        f"{exc.details.code} on {request.method} {request.url.path}: {exc.details.message}",
        extra=exc.log_extra(),
    )
    return exc.to_response()


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation failures are reported as 400 with per-field details"""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error on {request.url.path}: {errors}")

    first = errors[0] if errors else {"field": None, "message": "Invalid request"}
    wrapped = ValidationException(first["message"], field=first["field"])
    wrapped.details.context["errors"] = errors
    return wrapped.to_response()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing and framework errors in the same envelope, keeping their status"""
    message = str(exc.detail)
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route not found: {request.method} {request.url.path}"

    wrapped = PortfolioException(
        message,
        {"status_code": exc.status_code, "path": request.url.path},
        code="HTTP_ERROR",
        category=CATEGORY_BY_HTTP_STATUS.get(exc.status_code, ErrorCategory.SYSTEM),
        severity=ErrorSeverity.HIGH if exc.status_code >= 500 else ErrorSeverity.MEDIUM,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=wrapped.to_dict(),
        headers=getattr(exc, "headers", None),
    )


def make_unhandled_exception_handler(expose_details: bool):
    """Last-resort 500 handler; the exception text is only returned when expose_details is set"""

    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        wrapped = PortfolioException(
            str(exc) if expose_details else "Internal server error",
            {"path": request.url.path},
            severity=ErrorSeverity.HIGH,
        )
        return wrapped.to_response()

    return unhandled_exception_handler
