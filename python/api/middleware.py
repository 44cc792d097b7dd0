"""
FastAPI Middleware for the Compliance Screening API

Provides CORS configuration, request logging with audit correlation, and
the mapping of compliance errors to HTTP responses.
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from audit_logger import get_audit_logger
from compliance_errors import (
    ComplianceError,
    ConfigurationError,
    IncompleteChecklistError,
    InvalidTransitionError,
    RecordNotFoundError,
    StaleWriteError,
    ValidationError,
)
from text_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
    "http://127.0.0.1:8000",
]

EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]


def _build_cors_regex_pattern(allowed_origins: List[str]) -> Optional[str]:
    """Regex matching the allowed origins; ``*`` stands for one subdomain label.

    Returns None when no origin uses a wildcard.
    """
    if not any("*" in origin for origin in allowed_origins):
        return None
    patterns = [
        re.escape(origin).replace(r"\*", r"[\w-]+")
        for origin in allowed_origins
    ]
    return "|".join(f"({p})" for p in patterns)


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application.

    Origins can be customized via CORS_ORIGINS environment variable
    (comma-separated list, wildcards such as https://*.example.com allowed).
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    else:
        allowed_origins = DEFAULT_CORS_ORIGINS

    origin_regex = _build_cors_regex_pattern(allowed_origins)
    if origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=origin_regex,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request and tags audit events with its request id."""

    async def dispatch(self, request: Request, call_next: Callable):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time

        audit_logger = get_audit_logger()
        audit_logger.set_request_context(
            request_id=request_id,
            source_ip=request.client.host if request.client else "",
        )

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            audit_logger.clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)
        details: Structured extras such as missing checklist items (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion
    if details:
        error_detail["details"] = details

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def status_code_for(exc: ComplianceError) -> int:
    """HTTP status of a compliance error."""
    if isinstance(exc, (InvalidTransitionError, StaleWriteError)):
        return 409
    if isinstance(exc, (ValidationError, IncompleteChecklistError)):
        return 422
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, ConfigurationError):
        return 503
    return 500


def _error_details(exc: ComplianceError) -> Optional[Dict[str, Any]]:
    if isinstance(exc, IncompleteChecklistError):
        return {
            "target_status": exc.target_status,
            "missing_items": [item.to_dict() for item in exc.missing_items],
        }
    if isinstance(exc, StaleWriteError):
        return {
            "record_id": exc.record_id,
            "expected_version": exc.expected_version,
            "actual_version": exc.actual_version,
        }
    if isinstance(exc, InvalidTransitionError):
        return {"from_status": exc.from_status, "to_status": exc.to_status}
    return None


async def compliance_exception_handler(request: Request, exc: ComplianceError) -> JSONResponse:
    """Render a compliance error with its stable code and remediation data."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_code_for(exc)

    logger.warning(
        "Compliance error: code=%s status=%d message=%s request_id=%s",
        exc.code,
        status_code,
        sanitize_for_logging(exc.message),
        request_id,
    )

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            code=exc.code,
            message="Service is not ready. Please contact administrator.",
            status_code=status_code,
        )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=status_code,
        field=exc.field,
        suggestion=exc.suggestion,
        details=_error_details(exc),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema violations use the same error envelope as compliance errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or None
    return create_error_response(
        code="VALIDATION_ERROR",
        message=sanitize_for_logging(first.get("msg", "Invalid request")),
        status_code=422,
        field=field,
        details={"errors": [
            {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")}
            for e in errors
        ]},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(ComplianceError, compliance_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
