"""MongoDB-backed persistence for directory users."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from .errors import DuplicateEmailError, StoreFailure
from .models import EDITABLE_FIELDS, User

logger = logging.getLogger("userdirectory.mongo")


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _object_id(user_id: object) -> Optional[ObjectId]:
    if not isinstance(user_id, str) or not ObjectId.is_valid(user_id):
        return None
    return ObjectId(user_id)


class MongoUserStore:
    """Stores users in a ``users`` collection keyed by ObjectId."""

    def __init__(
        self,
        mongo_uri: str | None = None,
        *,
        database_name: str = "user_directory",
        collection: Collection | None = None,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        if collection is not None:
            self._client: MongoClient | None = None
            self._users = collection
            return

        if not mongo_uri:
            raise ValueError("mongo_uri is required for MongoUserStore.")

        self._client = MongoClient(
            mongo_uri,
            appname="UserDirectory",
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            tz_aware=True,
        )
        self._users = self._client[database_name]["users"]

    def initialize(self) -> None:
        try:
            self._users.create_index([("email", ASCENDING)], unique=True, name="idx_users_email")
        except OperationFailure as exc:
            if exc.code == 85:  # IndexOptionsConflict
                return
            raise StoreFailure(str(exc)) from exc
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc

    def ping(self) -> bool:
        if self._client is None:
            return True
        try:
            self._client.admin.command("ping")
        except PyMongoError:
            return False
        return True

    def list_users(self, skip: int, limit: int) -> List[User]:
        try:
            documents = list(self._users.find().skip(skip).limit(limit))
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        return [self._document_to_user(document) for document in documents]

    def count_users(self) -> int:
        try:
            return int(self._users.count_documents({}))
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc

    def search_users(self, text: str) -> List[User]:
        pattern = {"$regex": re.escape(text), "$options": "i"}
        query = {"$or": [{"name": pattern}, {"email": pattern}]}
        try:
            documents = list(self._users.find(query))
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        return [self._document_to_user(document) for document in documents]

    def get_user(self, user_id: str) -> Optional[User]:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        try:
            document = self._users.find_one({"_id": object_id})
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        if document is None:
            return None
        return self._document_to_user(document)

    def insert_user(self, fields: Mapping[str, object]) -> User:
        now = _current_timestamp()
        document: Dict[str, Any] = {name: fields[name] for name in EDITABLE_FIELDS}
        document["createdAt"] = now
        document["updatedAt"] = now
        try:
            result = self._users.insert_one(document)
        except DuplicateKeyError as exc:
            raise DuplicateEmailError() from exc
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        document["_id"] = result.inserted_id
        return self._document_to_user(document)

    def update_user(self, user_id: str, fields: Mapping[str, object]) -> Optional[User]:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        changes: Dict[str, Any] = {name: fields[name] for name in EDITABLE_FIELDS if name in fields}
        changes["updatedAt"] = _current_timestamp()
        try:
            document = self._users.find_one_and_update(
                {"_id": object_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise DuplicateEmailError() from exc
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        if document is None:
            return None
        return self._document_to_user(document)

    def delete_user(self, user_id: str) -> Optional[User]:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        try:
            document = self._users.find_one_and_delete({"_id": object_id})
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        if document is None:
            return None
        return self._document_to_user(document)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def _document_to_user(self, document: Mapping[str, Any]) -> User:
        created_at = _as_utc(document.get("createdAt"))
        if created_at is None:
            created_at = _as_utc(ObjectId(str(document["_id"])).generation_time)
        return User(
            id=str(document["_id"]),
            name=document["name"],
            email=document["email"],
            age=int(document["age"]),
            role=document.get("role") or "user",
            created_at=created_at,
            updated_at=_as_utc(document.get("updatedAt")),
        )


__all__ = ["MongoUserStore"]
