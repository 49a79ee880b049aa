"""Error handlers for the application.

Backend exceptions are mapped to HTTP status codes by walking the exception's
class hierarchy, so subclasses inherit the status of their closest mapped
ancestor (``UserNotFoundError`` → ``ResourceNotFoundError`` → 404).
"""
from __future__ import annotations
from typing import Optional

from flask import jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.http import HTTP_STATUS_CODES

from backend.core.exceptions import (
    AuthenticationError,
    BackendError,
    DuplicateResourceError,
    NotAllowedError,
    ResourceError,
    ResourceNotFoundError,
    UnsupportedOperationError,
    ValidationError,
)

STATUS_BY_EXCEPTION: dict[type, int] = {
    ResourceNotFoundError: 404,
    DuplicateResourceError: 409,
    ResourceError: 400,
    ValidationError: 400,
    NotAllowedError: 403,
    AuthenticationError: 401,
    UnsupportedOperationError: 405,
}


def status_for(error: BaseException) -> int:
    """HTTP status of the closest mapped class in ``error``'s MRO, else 500."""
    for cls in type(error).__mro__:
        status = STATUS_BY_EXCEPTION.get(cls)
        if status is not None:
            return status
    return 500


def error_body(status: int, message: str, internals: Optional[dict] = None) -> dict:
    body = {
        "status": status,
        "error": HTTP_STATUS_CODES.get(status, "Unknown Error"),
        "message": message,
        "path": request.path,
    }
    if internals:
        body.update(internals)
    return body


def error_response(status: int, message: str, internals: Optional[dict] = None):
    response = jsonify(error_body(status, message, internals))
    response.status_code = status
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    def _show_details() -> bool:
        # SECURITY: internals ONLY in debug/demo mode, never in production
        cfg = app.config.get("APP_CONFIG")
        return app.debug or bool(getattr(cfg, "demo_mode", False))

    @app.errorhandler(BackendError)
    def handle_backend_error(error: BackendError):
        """Handle typed service and assembly errors."""
        status = status_for(error)
        if status >= 500:
            app.logger.error(f"Backend error: {error}", exc_info=True)
        else:
            app.logger.info(f"{request.method} {request.path} failed with {status}: {error}")
        internals = error.report_internals() if _show_details() else None
        return error_response(status, str(error), internals)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Handle routing and abort() errors as JSON."""
        status = error.code or 500
        response = error_response(status, error.description or HTTP_STATUS_CODES.get(status, ""))
        valid_methods = getattr(error, "valid_methods", None)
        if valid_methods:
            response.headers["Allow"] = ", ".join(valid_methods)
        return response

    @app.errorhandler(Exception)
    def handle_exception(error: Exception):
        """Handle uncaught exceptions."""
        # ALWAYS log the full error (even in production) - logs are secure
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        internals = {"internalErrorType": type(error).__name__} if _show_details() else None
        return error_response(500, "An unexpected error occurred", internals)
