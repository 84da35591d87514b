"""Record store contract and backend selection."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Mapping, Optional, Protocol

from .models import User

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings


class UserStore(Protocol):
    """Persistence contract used by :class:`~userdirectory.directory.UserDirectory`.

    Implementations raise :class:`~userdirectory.errors.DuplicateEmailError`
    on unique-key violations and :class:`~userdirectory.errors.StoreFailure`
    for any other driver error. Malformed identifiers are simply not found.
    """

    def initialize(self) -> None:
        ...

    def ping(self) -> bool:
        ...

    def list_users(self, skip: int, limit: int) -> List[User]:
        ...

    def count_users(self) -> int:
        ...

    def search_users(self, text: str) -> List[User]:
        ...

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def insert_user(self, fields: Mapping[str, object]) -> User:
        ...

    def update_user(self, user_id: str, fields: Mapping[str, object]) -> Optional[User]:
        ...

    def delete_user(self, user_id: str) -> Optional[User]:
        ...


def open_store(settings: "Settings") -> UserStore:
    """Build the store backend named by ``settings.store``."""

    if settings.store == "sqlite":
        from .database import Database

        return Database(settings.database_path)

    if settings.store == "mongodb":
        from .mongo import MongoUserStore

        if not settings.mongo_uri:
            raise ValueError("MONGO_URI is required when the mongodb store is selected")
        return MongoUserStore(settings.mongo_uri, database_name=settings.mongo_database)

    raise ValueError(f"Unknown store backend '{settings.store}'. Expected 'sqlite' or 'mongodb'")


__all__ = ["UserStore", "open_store"]
