import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from ..exceptions import StoreError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
MEMORY_PATH = ":memory:"


class ConnectionPool:
    """
    A bounded pool of SQLite connections that can be shared between threads.

    Connections are created lazily up to ``max_connections``; callers block for
    up to ``timeout`` seconds when all of them are checked out.
    """

    def __init__(self, path: str, max_connections: int = 5, timeout: float = 30.0):
        self.path = str(path)
        # Every in-memory connection is a separate database.
        self.max_connections = 1 if self.path == MEMORY_PATH else max(1, int(max_connections))
        self.timeout = timeout
        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue(maxsize=self.max_connections)
        self._all: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

        if self.path != MEMORY_PATH:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"ConnectionPool initialized. DB: {self.path} (max {self.max_connections} connections)")

    def _new_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Error connecting to database {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        logger.debug(f"Opened database connection to {self.path}")
        return conn

    def acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreError("Connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            can_create = len(self._all) < self.max_connections
            if can_create:
                conn = self._new_connection()
                self._all.append(conn)
                return conn

        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise StoreError(f"Timed out after {self.timeout}s waiting for a database connection") from None

    def release(self, conn: sqlite3.Connection):
        if self._closed:
            conn.close()
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Check out a connection; the transaction commits on success and rolls back on error."""
        conn = self.acquire()
        try:
            with conn:
                yield conn
        finally:
            self.release(conn)

    def migrate(self):
        """Apply every bundled SQL migration in file-name order. Idempotent."""
        scripts = sorted(MIGRATIONS_DIR.glob("*.sql"))
        with self.connection() as conn:
            for script in scripts:
                try:
                    conn.executescript(script.read_text(encoding="utf-8"))
                except sqlite3.Error as e:
                    raise StoreError(f"Migration {script.name} failed: {e}") from e
                logger.info(f"Applied migration {script.name}")
        return [script.name for script in scripts]

    def health_check(self):
        """Raise StoreError unless the database answers a trivial query."""
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Database health check failed: {e}") from e

    def close(self):
        """Close every connection owned by the pool. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for conn in self._all:
                conn.close()
            self._all.clear()
        logger.debug("Database connections closed.")
