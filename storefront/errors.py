from __future__ import annotations


class StoreError(Exception):
    """Base error; the web layer turns it into ``{error, message}`` JSON."""

    status_code = 500
    error = "Server error"

    def __init__(self, message: str = "", error: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error
        if error is not None:
            self.error = error


class ValidationError(StoreError):
    status_code = 400
    error = "Invalid request"


class InvalidInput(ValidationError):
    error = "Invalid request body"


class AuthError(StoreError):
    status_code = 401
    error = "Unauthorized"


class PermissionDenied(StoreError):
    status_code = 403
    error = "Forbidden"


class NotFoundError(StoreError):
    status_code = 404
    error = "Not found"


class InfrastructureError(StoreError):
    status_code = 500
    error = "Database error"
