"""
Typed errors raised by the transport client, adapters and backends.
"""

from __future__ import annotations

from typing import Optional

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
SESSION_EXPIRED_MESSAGE = "Session expired. Please log in again."
EMPTY_RESPONSE_MESSAGE = "Empty response received"
MALFORMED_RESPONSE_MESSAGE = "Malformed response received"
GENERIC_ERROR_MESSAGE = "An error occurred"


class ApiError(Exception):
    """A failed API call: human message, HTTP-like status and optional app code."""

    def __init__(
        self, message: str, status_code: int, error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, status_code={self.status_code}, "
            f"error_code={self.error_code!r})"
        )


class NotFoundError(ApiError):
    pass


class SessionExpiredError(ApiError):
    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE):
        super().__init__(message, 401)


class DateDecodeError(ValueError):
    """Raised when a date field holds a value of no known wire shape."""

    def __init__(self, field: Optional[str], value: object):
        self.field = field
        self.value = value
        where = f" in field {field!r}" if field else ""
        super().__init__(
            f"Unrecognized timestamp{where}: {type(value).__name__} {value!r}"
        )


def api_error(
    message: str, status_code: int, error_code: Optional[str] = None
) -> ApiError:
    """Build the most specific ApiError subclass for a status code."""
    if status_code == 404:
        return NotFoundError(message, status_code, error_code)
    return ApiError(message, status_code, error_code)


_FRIENDLY_MESSAGES = {
    401: "Your session has expired. Please log in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    429: "Too many requests. Please try again later.",
    500: "A server error occurred. Please try again later.",
    502: "A server error occurred. Please try again later.",
    503: "A server error occurred. Please try again later.",
}

# Statuses whose server message is shown when present.
_MESSAGE_FIRST = {
    400: "Invalid request. Please check your input.",
    409: "A conflict occurred. The resource may already exist.",
    422: "The provided data is invalid.",
}


def user_friendly_message(error: BaseException) -> str:
    """Map an error to text suitable for showing an end user."""
    if isinstance(error, ApiError):
        if error.status_code in _FRIENDLY_MESSAGES:
            return _FRIENDLY_MESSAGES[error.status_code]
        if error.status_code in _MESSAGE_FIRST:
            return error.message or _MESSAGE_FIRST[error.status_code]
        return error.message or "An unexpected error occurred."
    return str(error) or "An unexpected error occurred."
