"""
API error handling

Exception classes, the JSON error envelope and the request logging
middleware of the monitoring API.
"""

import logging
import time
import traceback
from typing import Optional, Dict, Any
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from session_tracer.monitoring.errors import TraceNotFoundError

logger = logging.getLogger(__name__)


# ===== Error codes =====

class ErrorCode:
    """Standard error codes"""

    NOT_FOUND = "NOT_FOUND"

    INTERNAL_ERROR = "INTERNAL_ERROR"


# ===== Exceptions =====

class APIException(Exception):
    """
    Base API exception

    Carries a structured error payload for the JSON error envelope.
    """

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.INTERNAL_ERROR,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundException(APIException):
    """Resource not found"""

    def __init__(
        self,
        message: str,
        resource_type: str = "Resource",
        resource_id: Optional[str] = None
    ):
        details = {"resource_type": resource_type}
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details
        )


# ===== Response models =====

class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


# ===== Handlers =====

def error_response(
    message: str,
    code: str = ErrorCode.INTERNAL_ERROR,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    details: Optional[Dict[str, Any]] = None,
    include_stack: bool = False
) -> JSONResponse:
    """
    Build a JSON error response

    Args:
        message: Error message
        code: Error code
        status_code: HTTP status code
        details: Extra error details
        include_stack: Attach the stack trace (DEBUG logging only)
    """
    error_detail = {
        "code": code,
        "message": message,
        "details": details
    }

    if include_stack and logger.isEnabledFor(logging.DEBUG):
        error_detail["stack_trace"] = traceback.format_exc()

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(**error_detail)).model_dump()
    )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"API exception: {exc.message}", exc_info=True)
    else:
        logger.warning(f"API exception: {exc.code} - {exc.message}")

    return error_response(
        message=exc.message,
        code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
        include_stack=exc.status_code >= 500
    )


async def trace_not_found_handler(request: Request, exc: TraceNotFoundError) -> JSONResponse:
    logger.warning(f"Trace not found: {exc.trace_id}")

    return error_response(
        message=str(exc),
        code=ErrorCode.NOT_FOUND,
        status_code=status.HTTP_404_NOT_FOUND,
        details={"resource_type": "Trace", "resource_id": exc.trace_id}
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.INTERNAL_ERROR

    return error_response(
        message=detail,
        code=code,
        status_code=exc.status_code
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return error_response(
        message="Internal server error",
        code=ErrorCode.INTERNAL_ERROR,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        include_stack=True
    )


# ===== Request logging middleware =====

class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request and its response time"""

    def __init__(self, app):
        super().__init__(app)
        self.logger = logging.getLogger(__name__)

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        self.logger.info(
            f"Request: {request.method} {request.url.path} "
            f"from {self._get_client_ip(request)}"
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.error(
                f"Request failed: {request.method} {request.url.path} - {exc}",
                exc_info=True
            )
            raise

        process_time = (time.time() - start_time) * 1000

        self.logger.info(
            f"Response: {request.method} {request.url.path} "
            f"status={response.status_code} "
            f"time={process_time:.2f}ms"
        )

        response.headers["X-Process-Time"] = f"{process_time:.2f}"

        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else "unknown"


__all__ = [
    "ErrorCode",
    "APIException",
    "NotFoundException",
    "ErrorResponse",
    "ErrorDetail",
    "error_response",
    "api_exception_handler",
    "trace_not_found_handler",
    "http_exception_handler",
    "global_exception_handler",
    "LoggingMiddleware",
]
