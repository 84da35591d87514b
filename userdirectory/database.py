"""SQLite-backed persistence for directory users."""
from __future__ import annotations

import secrets
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import DuplicateEmailError, StoreFailure
from .models import User

_ID_ALPHABET = frozenset("0123456789abcdef")
_ID_LENGTH = 24

_COLUMNS = ("name", "email", "age", "role")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the directory database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "directory.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_user_id() -> str:
    return secrets.token_hex(_ID_LENGTH // 2)


def is_valid_user_id(user_id: object) -> bool:
    return (
        isinstance(user_id, str)
        and len(user_id) == _ID_LENGTH
        and set(user_id) <= _ID_ALPHABET
    )


def _contains_ci(haystack: Optional[str], needle: Optional[str]) -> int:
    if haystack is None or needle is None:
        return 0
    return int(needle.casefold() in haystack.casefold())


def _integrity_error(exc: sqlite3.IntegrityError) -> Exception:
    if "UNIQUE" in str(exc).upper():
        return DuplicateEmailError()
    return StoreFailure(str(exc))


class Database:
    """Simple wrapper around SQLite for persisting directory users."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function("contains_ci", 2, _contains_ci, deterministic=True)
        return conn

    def initialize(self) -> None:
        """Create the users table and its unique email index if missing."""

        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL,
                        age INTEGER NOT NULL CHECK (age >= 1),
                        role TEXT NOT NULL DEFAULT 'user',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(lower(email));
                    """
                )
        except sqlite3.Error as exc:
            raise StoreFailure(f"Failed to initialise database: {exc}") from exc

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_users(self, skip: int, limit: int) -> List[User]:
        rows = self._fetch_all(
            "SELECT * FROM users ORDER BY rowid LIMIT ? OFFSET ?",
            (limit, skip),
        )
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
        except sqlite3.Error as exc:
            raise StoreFailure(str(exc)) from exc
        return int(row["total"])

    def search_users(self, text: str) -> List[User]:
        rows = self._fetch_all(
            """
            SELECT * FROM users
            WHERE contains_ci(name, ?) OR contains_ci(email, ?)
            ORDER BY rowid
            """,
            (text, text),
        )
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[User]:
        if not is_valid_user_id(user_id):
            return None
        rows = self._fetch_all("SELECT * FROM users WHERE id = ?", (user_id,))
        if not rows:
            return None
        return self._row_to_user(rows[0])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def insert_user(self, fields: Mapping[str, object]) -> User:
        """Insert a user and return it with its assigned id and timestamps."""

        user_id = _generate_user_id()
        created_at = _current_timestamp()
        stamp = _serialize_datetime(created_at)

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, name, email, age, role, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        fields["name"],
                        fields["email"],
                        fields["age"],
                        fields["role"],
                        stamp,
                        stamp,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        except sqlite3.Error as exc:
            raise StoreFailure(str(exc)) from exc

        return User(
            id=user_id,
            name=str(fields["name"]),
            email=str(fields["email"]),
            age=int(fields["age"]),  # type: ignore[arg-type]
            role=str(fields["role"]),
            created_at=created_at,
            updated_at=created_at,
        )

    def update_user(self, user_id: str, fields: Mapping[str, object]) -> Optional[User]:
        """Overwrite the supplied columns and refresh ``updated_at``."""

        if not is_valid_user_id(user_id):
            return None

        columns = [column for column in _COLUMNS if column in fields]
        assignments = ", ".join(f"{column} = ?" for column in columns + ["updated_at"])
        values = [fields[column] for column in columns]
        values.append(_serialize_datetime(_current_timestamp()))

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*values, user_id),
                )
                if cursor.rowcount == 0:
                    return None
                row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        except sqlite3.Error as exc:
            raise StoreFailure(str(exc)) from exc

        return self._row_to_user(row)

    def delete_user(self, user_id: str) -> Optional[User]:
        if not is_valid_user_id(user_id):
            return None

        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
                if row is None:
                    return None
                conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        except sqlite3.Error as exc:
            raise StoreFailure(str(exc)) from exc

        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _fetch_all(self, query: str, params: tuple) -> List[sqlite3.Row]:
        try:
            with self._connect() as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreFailure(str(exc)) from exc

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            age=int(row["age"]),
            role=row["role"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )


__all__ = ["Database", "is_valid_user_id", "resolve_database_path"]
