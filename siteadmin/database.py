"""SQLite-backed persistence for users and site settings."""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .models import WEB_SETTINGS_FIELDS, User, WebSettings
from .queries import ALWAYS_TRUE, CASEFOLD_FUNCTION, Predicate, casefold

# Largest value SQLite can bind as an INTEGER.
SQLITE_MAX_INTEGER = 2**63 - 1


class DuplicateValueError(ValueError):
    """Raised when a write collides with a ``UNIQUE`` column."""

    def __init__(self, column: str) -> None:
        super().__init__(f"A user with that {column} already exists")
        self.column = column


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "siteadmin.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _normalize_phone(phone: Optional[str]) -> Optional[str]:
    if phone is None:
        return None
    stripped = phone.strip()
    return stripped or None


def _duplicate_column(exc: sqlite3.IntegrityError) -> str:
    message = str(exc)
    for column in ("email", "phone"):
        if f"users.{column}" in message:
            return column
    return "value"


class Database:
    """Simple wrapper around SQLite for persisting users and site settings."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function(CASEFOLD_FUNCTION, 1, casefold, deterministic=True)
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        settings_columns = ",\n".join(f"{column} TEXT" for column in WEB_SETTINGS_FIELDS)

        with self._connect() as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    phone TEXT UNIQUE,
                    roles TEXT NOT NULL DEFAULT '[]',
                    is_banned INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS web_settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    {settings_columns},
                    updated_at TEXT
                );
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        *,
        phone: Optional[str] = None,
        roles: Iterable[str] = (),
        is_banned: bool = False,
    ) -> User:
        """Insert a new user record and return it."""

        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")

        created_at = _current_timestamp()
        serialized = _serialize_datetime(created_at)

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, phone, roles, is_banned, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_name,
                        _normalize_email(email),
                        _normalize_phone(phone),
                        json.dumps(list(roles)),
                        int(bool(is_banned)),
                        serialized,
                        serialized,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateValueError(_duplicate_column(exc)) from exc
            user_id = cursor.lastrowid

        user = self.get_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        if not -SQLITE_MAX_INTEGER - 1 <= user_id <= SQLITE_MAX_INTEGER:
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(
        self,
        predicate: Predicate = ALWAYS_TRUE,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[User]:
        """Return users matching ``predicate`` in ascending id order."""

        query = f"SELECT * FROM users WHERE {predicate.clause} ORDER BY id"
        params: List[object] = list(predicate.params)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self, predicate: Predicate = ALWAYS_TRUE) -> int:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS total FROM users WHERE {predicate.clause}",
                predicate.params,
            ).fetchone()
        return int(row["total"])

    def email_taken(self, email: str, *, exclude_id: Optional[int] = None) -> bool:
        """Return ``True`` when another user already owns ``email``."""

        return self._value_taken("email", _normalize_email(email), exclude_id)

    def phone_taken(self, phone: Optional[str], *, exclude_id: Optional[int] = None) -> bool:
        """Return ``True`` when another user already owns ``phone``.

        A missing phone number never collides.
        """

        normalized = _normalize_phone(phone)
        if normalized is None:
            return False
        return self._value_taken("phone", normalized, exclude_id)

    def update_user(self, user_id: int, **fields: object) -> Optional[User]:
        """Apply ``fields`` to a user with a single ``UPDATE`` statement."""

        if not fields:
            return self.get_user(user_id)

        allowed = ("name", "email", "phone", "roles", "is_banned")

        updates: List[str] = []
        values: List[object] = []
        for column in allowed:
            if column not in fields:
                continue
            value = fields[column]
            if column == "email":
                value = _normalize_email(str(value))
            elif column == "phone":
                value = _normalize_phone(value)  # type: ignore[arg-type]
            elif column == "roles":
                value = json.dumps(list(value))  # type: ignore[call-overload]
            elif column == "is_banned":
                value = int(bool(value))
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_user(user_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.append(user_id)
        query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"

        with self._connect() as conn:
            try:
                cursor = conn.execute(query, values)
            except sqlite3.IntegrityError as exc:
                raise DuplicateValueError(_duplicate_column(exc)) from exc
            if cursor.rowcount == 0:
                return None

        return self.get_user(user_id)

    # ------------------------------------------------------------------
    # Site settings
    # ------------------------------------------------------------------
    def get_web_settings(self) -> WebSettings:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM web_settings WHERE id = 1").fetchone()
        if row is None:
            return WebSettings()
        return WebSettings(**{column: row[column] for column in WEB_SETTINGS_FIELDS})

    def save_web_settings(self, settings: WebSettings) -> WebSettings:
        values = settings.to_dict()
        columns = list(WEB_SETTINGS_FIELDS) + ["updated_at"]
        params = [values[column] for column in WEB_SETTINGS_FIELDS]
        params.append(_serialize_datetime(_current_timestamp()))
        assignments = ", ".join(f"{column} = excluded.{column}" for column in columns)

        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO web_settings (id, {', '.join(columns)})
                VALUES (1, {', '.join('?' for _ in columns)})
                ON CONFLICT(id) DO UPDATE SET {assignments}
                """,
                params,
            )
        return self.get_web_settings()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _value_taken(self, column: str, value: str, exclude_id: Optional[int]) -> bool:
        query = f"SELECT 1 FROM users WHERE {column} = ?"
        params: List[object] = [value]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)

        with self._connect() as conn:
            row = conn.execute(query + " LIMIT 1", params).fetchone()
        return row is not None

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            phone=row["phone"],
            roles=tuple(json.loads(row["roles"] or "[]")),
            is_banned=bool(row["is_banned"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["Database", "DuplicateValueError", "SQLITE_MAX_INTEGER", "resolve_database_path"]
