"""Exception handlers for the multistore API.

Maps domain errors to HTTP status codes and renders every error in the
bilingual ApiResponse envelope.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from multistore.api.schemas import ApiResponse, ErrorDetail
from multistore.domain.exceptions import (
    BusinessRuleError,
    DomainError,
    IntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentProcessingError,
    ValidationError,
)

logger = structlog.get_logger()

# Checked in order; first match wins.
_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (IntegrityError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateTransitionError, status.HTTP_400_BAD_REQUEST),
    (BusinessRuleError, status.HTTP_400_BAD_REQUEST),
    (PaymentProcessingError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

GENERIC_ERROR_MESSAGE = "An internal error occurred"
GENERIC_ERROR_MESSAGE_AR = "حدث خطأ داخلي"


def status_for(error: DomainError) -> int:
    """HTTP status for a domain error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def error_response(
    request: Request,
    status_code: int,
    message: str,
    message_ar: str | None = None,
    errors: list[ErrorDetail] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an error in the standard envelope."""
    envelope = ApiResponse[Any](
        success=False,
        message=message,
        message_ar=message_ar,
        errors=errors or [],
        status_code=status_code,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope),
        headers=headers,
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handle domain errors raised by services."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "Domain error",
            error_code=exc.error_code,
            error=exc.message,
            path=request.url.path,
        )
    else:
        logger.info(
            "Request rejected",
            error_code=exc.error_code,
            error=exc.message,
            path=request.url.path,
        )
    return error_response(
        request,
        status_code,
        message=exc.message,
        message_ar=exc.message_ar,
        errors=[ErrorDetail(field=exc.details.get("field"), message=exc.error_code)],
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body and parameter validation failures."""
    errors = [
        ErrorDetail(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body") or None,
            message=err.get("msg", "Invalid value"),
        )
        for err in exc.errors()
    ]
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        message="Request validation failed",
        message_ar="بيانات الطلب غير صالحة",
        errors=errors,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        message = detail.get("message", str(detail))
        message_ar = detail.get("message_ar")
    else:
        message = str(detail)
        message_ar = None
    return error_response(
        request,
        exc.status_code,
        message=message,
        message_ar=message_ar,
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with a generic message."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=GENERIC_ERROR_MESSAGE,
        message_ar=GENERIC_ERROR_MESSAGE_AR,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error handlers to the application."""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
