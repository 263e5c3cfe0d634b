from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Raised from services and handlers; rendered as a JSON error body."""

    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        if self.code:
            body["code"] = self.code
        return body


class ValidationFailed(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    # Duplicate names and blocked deletes surface as validation errors to clients.
    status_code = 400


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status_code == 403:
            app.logger.warning(
                "Forbidden: %s missing_permission=%s request_id=%s",
                e.message,
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        status = e.code or 500
        if status >= 500:
            app.logger.error("HTTP %s (request_id=%s): %s", status, getattr(g, "request_id", None), e)
        return jsonify({"success": False, "error": e.description or e.name}), status

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"success": False, "error": "Internal server error"}), 500
