import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ..exceptions import ConstraintViolation, NotFound
from .database import ConnectionPool

logger = logging.getLogger(__name__)

USER_COLUMNS = "id, name, email, created_at, updated_at"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass
class User:
    """A user record. ``id`` is assigned by the store on creation."""
    name: str
    email: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'User':
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )


class UserRepository:
    """Create, read, update, delete and list users in the ``users`` table."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def create(self, user: User) -> User:
        """
        Insert a user, stamping both timestamps with the current time.

        Returns:
            The same user with ``id``, ``created_at`` and ``updated_at`` populated.

        Raises:
            ConstraintViolation: if the email is already taken.
        """
        now = _utcnow()
        try:
            with self.pool.connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (name, email, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (user.name, user.email, _to_db(now), _to_db(now)),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"User with email '{user.email}' already exists") from e

        user.id = cursor.lastrowid
        user.created_at = now
        user.updated_at = now
        logger.debug(f"Created user {user.id} <{user.email}>")
        return user

    def _fetch_one(self, where: str, value) -> Optional[User]:
        with self.pool.connection() as conn:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE {where} = ?", (value,)).fetchone()
        return User.from_row(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User:
        user = self._fetch_one("id", user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def get_by_email(self, email: str) -> User:
        user = self._fetch_one("email", email)
        if user is None:
            raise NotFound(f"User with email '{email}' not found")
        return user

    def update(self, user: User) -> User:
        """
        Write ``name`` and ``email`` for ``user.id`` and re-stamp ``updated_at``.

        Raises:
            NotFound: if no user has that id.
            ConstraintViolation: if the new email belongs to another user.
        """
        now = _utcnow()
        try:
            with self.pool.connection() as conn:
                cursor = conn.execute(
                    "UPDATE users SET name = ?, email = ?, updated_at = ? WHERE id = ?",
                    (user.name, user.email, _to_db(now), user.id),
                )
                if cursor.rowcount == 0:
                    raise NotFound(f"User {user.id} not found")
                row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user.id,)).fetchone()
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"User with email '{user.email}' already exists") from e
        return User.from_row(row)

    def delete(self, user_id: int):
        """Remove a user. Raises NotFound if nothing was deleted."""
        with self.pool.connection() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if cursor.rowcount == 0:
            raise NotFound(f"User {user_id} not found")
        logger.debug(f"Deleted user {user_id}")

    def list(self, limit: int = 10, offset: int = 0) -> List[User]:
        """Return users newest first, paginated by ``limit`` and ``offset``."""
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")
        with self.pool.connection() as conn:
            rows = conn.execute(
                f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [User.from_row(row) for row in rows]
