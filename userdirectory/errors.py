"""Error taxonomy shared by the directory core and the protocol adapters."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORE_FAILURE = "store_failure"
    MALFORMED_REQUEST = "malformed_request"


class DirectoryError(Exception):
    """Base class for every failure the directory reports to callers."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UserValidationError(DirectoryError):
    """Raised when user fields are missing or violate a field rule."""

    kind = ErrorKind.VALIDATION


class UserNotFoundError(DirectoryError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message)


class DuplicateEmailError(DirectoryError):
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str = "A user with that email already exists") -> None:
        super().__init__(message)


class StoreFailure(DirectoryError):
    """Raised when the record store is unreachable or returns an error."""

    kind = ErrorKind.STORE_FAILURE


class MalformedRequestError(DirectoryError):
    """Raised when a request body or envelope cannot be parsed."""

    kind = ErrorKind.MALFORMED_REQUEST


__all__ = [
    "DirectoryError",
    "DuplicateEmailError",
    "ErrorKind",
    "MalformedRequestError",
    "StoreFailure",
    "UserNotFoundError",
    "UserValidationError",
]
