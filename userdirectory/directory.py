"""Protocol-agnostic user directory operations.

Both the REST and SOAP adapters call into :class:`UserDirectory`; neither
adapter talks to the record store directly. Validation lives here so that a
record accepted over one protocol is accepted over the other.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from .errors import UserNotFoundError, UserValidationError
from .models import DEFAULT_ROLE, EDITABLE_FIELDS, ROLES, User
from .store import UserStore

logger = logging.getLogger("userdirectory.directory")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

# Largest integer both stores can bind (SQLite INTEGER, BSON int64).
MAX_AGE = 2**63 - 1
# Bound for page and limit so that (page - 1) * limit still fits in MAX_AGE.
MAX_PAGING_VALUE = 2**31 - 1

# Characters outside the XML 1.0 Char production cannot appear in SOAP responses.
_XML_INVALID_CHARS = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

_FIELD_LABELS = {"name": "Name", "email": "Email", "age": "Age", "role": "Role"}


class UserFields(BaseModel):
    """Validated, normalised editable fields of a user record."""

    model_config = ConfigDict(extra="ignore")

    name: str
    email: str
    age: int
    role: str = DEFAULT_ROLE

    @field_validator("name", "email", mode="before")
    @classmethod
    def _require_text(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(f"{_FIELD_LABELS[info.field_name]} is required")
        return value

    @field_validator("name", "email")
    @classmethod
    def _check_characters(cls, value: str, info: ValidationInfo) -> str:
        if _XML_INVALID_CHARS.search(value):
            raise ValueError(f"{_FIELD_LABELS[info.field_name]} contains control characters")
        return value

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("age", mode="before")
    @classmethod
    def _require_age(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("Age is required")
        if isinstance(value, bool):
            raise ValueError("Age must be a whole number")
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("age")
    @classmethod
    def _check_age(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Age must be at least 1")
        if value > MAX_AGE:
            raise ValueError("Age is too large")
        return value

    @field_validator("role", mode="before")
    @classmethod
    def _check_role(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_ROLE
        if not isinstance(value, str) or value.strip() not in ROLES:
            raise ValueError(
                f"'{value}' is not a valid role. Expected one of: {', '.join(ROLES)}"
            )
        return value.strip()


def _describe_validation_error(exc: ValidationError) -> str:
    messages: List[str] = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error.get("loc") else "user"
        label = _FIELD_LABELS.get(field, field)
        if error["type"] == "missing":
            messages.append(f"{label} is required")
        elif error["type"] == "value_error":
            messages.append(str(error["ctx"]["error"]))
        else:
            messages.append(f"{label}: {error['msg']}")
    return ", ".join(messages)


def validate_user_fields(payload: Mapping[str, Any]) -> UserFields:
    """Validate a user payload, raising :class:`UserValidationError` on failure."""

    if not isinstance(payload, Mapping):
        raise UserValidationError("User data must be an object")
    try:
        return UserFields.model_validate(dict(payload))
    except ValidationError as exc:
        raise UserValidationError(_describe_validation_error(exc)) from exc


def _coerce_positive(raw: object, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    if value < 1:
        return default
    return min(value, MAX_PAGING_VALUE)


@dataclass(frozen=True)
class UserPage:
    users: List[User]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class SearchResult:
    users: List[User]
    total: int


class UserDirectory:
    """Directory operations shared by every protocol adapter."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    @property
    def store(self) -> UserStore:
        return self._store

    def store_connected(self) -> bool:
        return self._store.ping()

    def list_users(
        self,
        page: object = None,
        limit: object = None,
        *,
        max_limit: Optional[int] = None,
    ) -> UserPage:
        """Return one page of users together with the size of the whole collection."""

        page_number = _coerce_positive(page, DEFAULT_PAGE)
        page_size = _coerce_positive(limit, DEFAULT_LIMIT)
        if max_limit is not None:
            page_size = min(page_size, max_limit)

        skip = (page_number - 1) * page_size
        users = self._store.list_users(skip, page_size)
        total = self._store.count_users()
        return UserPage(users=users, total=total, page=page_number, limit=page_size)

    def search_users(self, query: object = None) -> SearchResult:
        """Case-insensitive substring search over name and email; '' matches all."""

        text = "" if query is None else str(query)
        users = self._store.search_users(text)
        return SearchResult(users=users, total=len(users))

    def get_user(self, user_id: str) -> User:
        user = self._store.get_user(user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    def create_user(self, payload: Mapping[str, Any]) -> User:
        fields = validate_user_fields(payload)
        user = self._store.insert_user(fields.model_dump())
        logger.info("Created user %s <%s>", user.id, user.email)
        return user

    def update_user(self, user_id: str, changes: Mapping[str, Any]) -> User:
        """Merge the supplied fields over the stored record and re-validate it.

        Only keys present in ``changes`` are applied, so an omitted field keeps
        its stored value while an explicit ``None`` or empty value replaces it.
        """

        current = self.get_user(user_id)
        if not isinstance(changes, Mapping):
            raise UserValidationError("User data must be an object")

        supplied = {name: changes[name] for name in EDITABLE_FIELDS if name in changes}
        merged = {**current.fields(), **supplied}
        fields = validate_user_fields(merged).model_dump()

        updated = self._store.update_user(
            user_id,
            {name: fields[name] for name in supplied},
        )
        if updated is None:
            raise UserNotFoundError()
        logger.info("Updated user %s (%s)", updated.id, ", ".join(sorted(supplied)) or "no fields")
        return updated

    def delete_user(self, user_id: str) -> User:
        deleted = self._store.delete_user(user_id)
        if deleted is None:
            raise UserNotFoundError()
        logger.info("Deleted user %s <%s>", deleted.id, deleted.email)
        return deleted


__all__ = [
    "DEFAULT_LIMIT",
    "DEFAULT_PAGE",
    "MAX_AGE",
    "MAX_PAGING_VALUE",
    "SearchResult",
    "UserDirectory",
    "UserFields",
    "UserPage",
    "validate_user_fields",
]
