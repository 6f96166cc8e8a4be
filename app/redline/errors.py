"""API error types.

Services raise these; the app factory turns them into
``{"error": {"code": ..., "message": ...}}`` responses.
"""

from __future__ import annotations


class ApiError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        self.message = message or self.message
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class BadRequest(ApiError):
    status_code = 400
    code = "BAD_REQUEST"
    message = "Bad request"


class Unauthorized(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class Conflict(ApiError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflict"


class TooManyRequests(ApiError):
    status_code = 429
    code = "TOO_MANY_REQUESTS"
    message = "Rate limit exceeded"


class ValidationFailed(BadRequest):
    """Bad request carrying every payload problem at once."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["error"]["details"] = self.errors
        return body
