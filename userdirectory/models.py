"""Domain models shared by the directory core and both protocol adapters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ROLES = ("user", "admin", "moderator")
DEFAULT_ROLE = "user"

EDITABLE_FIELDS = ("name", "email", "age", "role")


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the directory."""

    id: str
    name: str
    email: str
    age: int
    role: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    def fields(self) -> dict[str, object]:
        """Return the editable fields as a plain dictionary."""

        return {name: getattr(self, name) for name in EDITABLE_FIELDS}


def format_timestamp(value: Optional[datetime]) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""

    if value is None:
        return ""
    text = value.isoformat(timespec="milliseconds")
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


__all__ = ["DEFAULT_ROLE", "EDITABLE_FIELDS", "ROLES", "User", "format_timestamp"]
