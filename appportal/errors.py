"""HTTP error taxonomy rendered as ``{"message": ...}`` JSON bodies."""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "internal server error"


class ApiError(Exception):
    """Base class for failures that map onto a fixed status code."""

    status_code = 500
    default_message = INTERNAL_ERROR_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(ApiError):
    status_code = 400
    default_message = "bad request"


class DuplicateUserError(ApiError):
    status_code = 400
    default_message = "User already exists"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "unauthorized"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "not found"


class InternalError(ApiError):
    status_code = 500


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        return jsonify({"message": exc.message}), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return jsonify({"message": exc.description or exc.name}), exc.code or 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        logger.exception("Unhandled error while serving request: %s", exc)
        return jsonify({"message": INTERNAL_ERROR_MESSAGE}), 500
