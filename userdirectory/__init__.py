"""User directory served over REST and SOAP from a single listener."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path
from .directory import UserDirectory
from .errors import (
    DirectoryError,
    DuplicateEmailError,
    ErrorKind,
    MalformedRequestError,
    StoreFailure,
    UserNotFoundError,
    UserValidationError,
)
from .models import User


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the combined REST + SOAP application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "DirectoryError",
    "DuplicateEmailError",
    "ErrorKind",
    "MalformedRequestError",
    "StoreFailure",
    "User",
    "UserDirectory",
    "UserNotFoundError",
    "UserValidationError",
    "create_app",
    "resolve_database_path",
]
