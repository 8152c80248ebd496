"""
Application error types and the Flask handlers that render them.

Routes raise `AppError` (usually through one of its factory methods);
`register_error_handlers` turns it, werkzeug HTTP errors and anything
unexpected into the standard error envelope.
"""

import logging
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from mealmate import config

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again later."


class ErrorCode(str, Enum):
    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_URL = "INVALID_URL"
    URL_REQUIRED = "URL_REQUIRED"
    TEXT_REQUIRED = "TEXT_REQUIRED"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"

    # Authentication / authorization (401, 403)
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"

    # Not found (404)
    NOT_FOUND = "NOT_FOUND"
    RECIPE_NOT_FOUND = "RECIPE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    MEAL_PLAN_NOT_FOUND = "MEAL_PLAN_NOT_FOUND"

    # Conflict (409)
    CONFLICT = "CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Parsing (422)
    PARSING_FAILED = "PARSING_FAILED"
    PARSING_ERROR = "PARSING_ERROR"
    TEXT_PARSING_FAILED = "TEXT_PARSING_FAILED"
    TEXT_PARSING_ERROR = "TEXT_PARSING_ERROR"
    RECIPE_PARSING_ERROR = "RECIPE_PARSING_ERROR"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # External APIs (502, 503)
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    OPENAI_API_ERROR = "OPENAI_API_ERROR"

    # Internal (500)
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    FILE_PROCESSING_ERROR = "FILE_PROCESSING_ERROR"


class AppError(Exception):
    """An error with an HTTP status and a stable machine-readable code."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str = ErrorCode.INTERNAL_SERVER_ERROR,
        status_code: int = 500,
        is_operational: bool = True,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code) if not isinstance(code, ErrorCode) else code
        self.status_code = status_code
        self.is_operational = is_operational
        self.details = details
        self.timestamp = _now_iso()

    @classmethod
    def validation(cls, message: str, details: Any = None) -> "AppError":
        return cls(message, ErrorCode.VALIDATION_ERROR, 400, True, details)

    @classmethod
    def authentication(cls, message: str = "Authentication required") -> "AppError":
        return cls(message, ErrorCode.AUTHENTICATION_ERROR, 401)

    @classmethod
    def authorization(cls, message: str = "Insufficient permissions") -> "AppError":
        return cls(message, ErrorCode.AUTHORIZATION_ERROR, 403)

    @classmethod
    def not_found(cls, resource: str = "Resource", code: ErrorCode = ErrorCode.NOT_FOUND) -> "AppError":
        return cls(f"{resource} not found", code, 404)

    @classmethod
    def conflict(cls, message: str) -> "AppError":
        return cls(message, ErrorCode.CONFLICT, 409)

    @classmethod
    def rate_limit(cls, message: str = "Too many requests") -> "AppError":
        return cls(message, ErrorCode.RATE_LIMIT_EXCEEDED, 429)

    @classmethod
    def external_api(cls, service: str, details: Any = None) -> "AppError":
        return cls(f"External API error: {service}", ErrorCode.EXTERNAL_API_ERROR, 502, True, details)

    @classmethod
    def internal(cls, message: str = "Internal server error", details: Any = None) -> "AppError":
        return cls(message, ErrorCode.INTERNAL_SERVER_ERROR, 500, False, details)


# Status codes werkzeug raises on its own (routing, method, limiter)
_HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTHENTICATION_ERROR,
    403: ErrorCode.AUTHORIZATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.INVALID_INPUT,
    409: ErrorCode.CONFLICT,
    413: ErrorCode.INVALID_INPUT,
    415: ErrorCode.INVALID_INPUT,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_request_id() -> str:
    return uuid.uuid4().hex


def build_error_response(error: AppError, stack: str | None = None):
    """Render an AppError into the error envelope and its status code."""
    timestamp = _now_iso()
    request_id = _generate_request_id()
    message = error.message
    details = error.details

    log_method = logger.warning if error.is_operational and error.status_code < 500 else logger.error
    log_method(
        "Request error",
        extra={
            "request_id": request_id,
            "code": error.code.value,
            "status_code": error.status_code,
            "error_message": error.message,
            "method": request.method,
            "path": request.path,
            "remote_addr": request.remote_addr,
            "user_agent": request.headers.get("User-Agent"),
        },
    )

    # Don't expose internals in production
    if config.is_production() and (not error.is_operational or error.status_code >= 500):
        message = GENERIC_ERROR_MESSAGE
        details = None

    body = {
        "success": False,
        "error": {
            "code": error.code.value,
            "message": message,
            "timestamp": timestamp,
            "path": request.path,
        },
        "meta": {
            "timestamp": timestamp,
            "request_id": request_id,
            "version": config.APP_VERSION,
        },
    }
    if details is not None:
        body["error"]["details"] = details
    if stack and config.is_development():
        body["error"]["stack"] = stack

    return jsonify(body), error.status_code


def register_error_handlers(app: Flask) -> None:
    """Install the envelope renderers on a Flask app."""

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        stack = traceback.format_exc() if error.status_code >= 500 else None
        return build_error_response(error, stack)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        status = error.code or 500
        code = _HTTP_STATUS_CODES.get(status, ErrorCode.INTERNAL_SERVER_ERROR)
        if status == 404:
            message = f"Route {request.method} {request.path} not found"
        else:
            message = error.description or error.name
        return build_error_response(AppError(message, code, status, status < 500))

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        logger.exception("Unhandled exception", extra={"path": request.path, "method": request.method})
        wrapped = AppError(
            str(error) or "An unexpected error occurred",
            ErrorCode.INTERNAL_SERVER_ERROR,
            500,
            is_operational=False,
        )
        return build_error_response(wrapped, traceback.format_exc())
