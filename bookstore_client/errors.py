"""
Error types and tagged results for the bookstore client.

Responses are decoded at the gateway boundary into ``Ok`` or ``Err`` so that
callers can tell "request failed" apart from "response unparsable" without
catching exceptions. ``Err.to_exception()`` turns a result into the matching
``BookstoreAPIError`` subclass for code that prefers to raise.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union


T = TypeVar("T")


class BookstoreAPIError(Exception):
    """Base error for everything the bookstore backend client raises"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class TransportError(BookstoreAPIError):
    """Network unreachable, connection reset or timeout"""
    pass


class AuthorizationError(BookstoreAPIError):
    """Credentials rejected and could not be refreshed"""
    pass


class DecodeError(BookstoreAPIError):
    """Server answered with a success status but an unusable body"""
    pass


class APIResponseError(BookstoreAPIError):
    """Server answered with a non-success status"""
    pass


class ValidationError(APIResponseError):
    """Server rejected the request for domain reasons"""
    pass


class ErrorKind(Enum):
    TRANSPORT = "transport"
    AUTHORIZATION = "authorization"
    DECODE = "decode"
    REJECTED = "rejected"
    HTTP = "http"


_KIND_TO_EXCEPTION = {
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.DECODE: DecodeError,
    ErrorKind.REJECTED: ValidationError,
    ErrorKind.HTTP: APIResponseError,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successfully decoded response payload"""
    data: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed or undecodable response"""
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    details: Optional[Any] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return False

    def to_exception(self) -> BookstoreAPIError:
        exc_class = _KIND_TO_EXCEPTION[self.kind]
        return exc_class(self.message, status_code=self.status_code, details=self.details)


Result = Union[Ok[Any], Err]


_STATUS_MESSAGES: Dict[int, str] = {
    400: "Invalid request. Please check your input.",
    401: "Authentication failed. Please log in again.",
    403: "You are not authorized to perform this action.",
    404: "Resource not found.",
    422: "Validation error. Please check your input.",
    500: "Server error. Please try again later.",
    501: "Server error. Please try again later.",
    502: "Server error. Please try again later.",
    503: "Server error. Please try again later.",
}

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred."


def message_for_status(status_code: int, data: Optional[Any] = None) -> str:
    """Pick the server-provided message when there is one, else a fallback for the status."""
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return _STATUS_MESSAGES.get(status_code, DEFAULT_ERROR_MESSAGE)


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.AUTHORIZATION
    if status_code in (400, 409, 422):
        return ErrorKind.REJECTED
    return ErrorKind.HTTP
