from typing import Dict, Iterable, Optional

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge


class ApiError(Exception):
    """Base class for errors that map onto a JSON error response."""

    status_code = 500
    code = "InternalError"
    message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, object]] = None,
    ):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.extra = dict(extra or {})

    def to_dict(self) -> Dict[str, object]:
        body: Dict[str, object] = {"message": self.message, "error": self.code}
        body.update(self.extra)
        return body


class Unauthorized(ApiError):
    status_code = 401
    code = "InvalidOrExpired"
    message = "Invalid or expired token."


class Forbidden(ApiError):
    status_code = 403
    code = "NotAdmin"
    message = "Admin access required."


class NotFound(ApiError):
    status_code = 404
    code = "NotFound"
    message = "Resource not found."


class ValidationError(ApiError):
    status_code = 400
    code = "ValidationError"
    message = "All required fields must be filled."

    def __init__(self, message: Optional[str] = None, missing_fields: Iterable[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = list(missing_fields)
        if self.missing_fields:
            self.extra["missingFields"] = self.missing_fields


class BadUpload(ApiError):
    status_code = 400
    code = "BadUpload"
    message = "Unsupported image upload."

    def __init__(self, reason: str, message: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.extra["reason"] = reason


class UploadFailed(ApiError):
    status_code = 500
    code = "UploadFailed"
    message = "We could not store the uploaded image."

    def __init__(self, cause: str, message: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.cause = cause
        self.extra["detail"] = cause


class InternalError(ApiError):
    pass


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        if exc.status_code >= 500:
            app.logger.error(
                "%s on %s %s: %s", exc.code, request.method, request.path, exc
            )
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_oversized_upload(exc):
        limit = current_app.config.get("MAX_CONTENT_LENGTH")
        error = BadUpload(
            "size",
            f"The uploaded file is too large. Limit is {limit} bytes.",
            status_code=413,
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        if isinstance(exc, HTTPException):
            return exc

        app.logger.exception(
            "Unhandled error on %s %s", request.method, request.path
        )
        error = InternalError(extra={"detail": str(exc)})
        return jsonify(error.to_dict()), error.status_code
