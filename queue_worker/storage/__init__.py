"""Record store: a SQLite connection pool and the user repository."""

from .database import ConnectionPool
from .user_repository import User, UserRepository

__all__ = ["ConnectionPool", "User", "UserRepository"]
