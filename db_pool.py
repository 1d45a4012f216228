"""Pooled SQLite connections for the points store."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Full, Queue
from typing import Generator

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe pool handing out autocommit-off SQLite connections."""

    def __init__(self, database: str, max_connections: int = 5, busy_timeout_ms: int = 5000):
        self.database = database
        self.max_connections = max_connections
        self.busy_timeout_ms = busy_timeout_ms
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created = 0

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._idle.get(block=False)
        except Empty:
            with self._lock:
                if self._created < self.max_connections:
                    self._created += 1
                    logger.debug("Opened pooled connection %s/%s", self._created, self.max_connections)
                    return self._open()
            return self._idle.get(block=True)

    def _release(self, connection: sqlite3.Connection) -> None:
        try:
            connection.rollback()
            self._idle.put(connection, block=False)
        except (sqlite3.Error, Full) as exc:
            logger.error("Dropping pooled connection: %s", exc)
            connection.close()
            with self._lock:
                self._created -= 1

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        connection = self._acquire()
        try:
            yield connection
        finally:
            self._release(connection)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection holding the write lock until commit.

        ``BEGIN IMMEDIATE`` serializes concurrent read-modify-write sequences
        on the ledger and attempt counters.
        """
        with self.get_connection() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except Exception:
                connection.rollback()
                raise
            connection.commit()

    def close_all(self) -> None:
        while True:
            try:
                connection = self._idle.get(block=False)
            except Empty:
                break
            connection.close()
            with self._lock:
                self._created -= 1
