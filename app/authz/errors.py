"""
Domain errors raised by services, rendered as JSON by the handlers registered in create_app().
"""
from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 400
    default_message = "Bad request."

    def __init__(self, message: str | None = None, *, status: int | None = None, errors: dict[str, list[str]] | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status:
            self.status_code = status
        self.errors = errors


class ValidationFailed(ApiError):
    status_code = 422
    default_message = "The given data was invalid."

    def __init__(self, errors: dict[str, list[str]] | str, message: str | None = None):
        if isinstance(errors, str):
            errors = {"_": [errors]}
        first = next(iter(errors.values()), [None])[0]
        super().__init__(message or first or self.default_message, errors=errors)


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found."


class Forbidden(ApiError):
    status_code = 403
    default_message = "This action is unauthorized."


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Unauthenticated."


def field_error(field: str, message: str) -> ValidationFailed:
    return ValidationFailed({field: [message]})


class ErrorBag:
    """Collects field errors; raise_if_any() raises a single ValidationFailed."""

    def __init__(self) -> None:
        self.errors: dict[str, list[str]] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, []).append(message)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationFailed(self.errors)


def _payload(message: str, errors: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"message": message}
    if errors:
        body["errors"] = errors
    return body


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("ApiError %s (request_id=%s): %s", e.status_code, getattr(g, "request_id", None), e.message)
        return jsonify(_payload(e.message, e.errors)), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        return jsonify(_payload(e.description or e.name)), e.code or 500

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify(_payload("Server error.")), 500
