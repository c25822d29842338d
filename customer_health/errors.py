"""
Error taxonomy and FastAPI exception handlers.

Every failure bubbles up unchanged to the API boundary, where it is mapped to
one of these classes and rendered as the uniform JSON envelope:

    {"success": false, "error": "...", "details"?: ..., "timestamp": "...", "path": "..."}

- RequestValidationError -> 400 "Validation Error" (bad ids, bad bodies, bad query values)
- HTTPException          -> its status and detail (unknown route 404, wrong method 405)
- ApiError subclasses    -> their own status code and message (404 "Customer not found", ...)
- DataAccessError / SQLAlchemyError -> 500 "Database Error"
- DatabaseNotReady       -> 503, retryable
- anything else          -> 500 "Internal Server Error"
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error with a known HTTP status and a client-facing message."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND


class DataAccessError(Exception):
    """The storage layer failed; transient and permanent failures are not told apart."""


class MetricAggregationError(DataAccessError):
    """One of the metric queries failed for a customer."""


class DatabaseNotReady(Exception):
    """The database has not been connected yet; the caller may retry."""


def error_body(request: Request, message: str, details: Any = None) -> dict:
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    body["path"] = request.url.path
    return body


def _respond(request: Request, status_code: int, message: str, details: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(error_body(request, message, details)),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    logger.info("Validation error on %s: %s", request.url.path, details)
    return _respond(request, status.HTTP_400_BAD_REQUEST, "Validation Error", details)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _respond(request, exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _respond(request, exc.status_code, exc.message, exc.details)


async def data_access_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Database error on %s: %s", request.url.path, exc, exc_info=exc)
    return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Database Error")


async def not_ready_handler(request: Request, exc: DatabaseNotReady) -> JSONResponse:
    logger.warning("Request to %s while database is not ready", request.url.path)
    response = _respond(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Database not ready")
    response.headers["Retry-After"] = "1"
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=exc)
    return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(DataAccessError, data_access_error_handler)
    app.add_exception_handler(SQLAlchemyError, data_access_error_handler)
    app.add_exception_handler(DatabaseNotReady, not_ready_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
