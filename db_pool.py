"""Pooled SQLite connections shared by the request worker threads."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    FastAPI runs sync handlers on a threadpool, so a connection may be handed
    to a different thread than the one that opened it.
    """

    def __init__(self, database: str, max_connections: int = 5, busy_timeout: float = 5.0):
        self.database = database
        self.max_connections = max_connections
        self.busy_timeout = busy_timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created = 0

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database,
            timeout=self.busy_timeout,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection, opening one while under ``max_connections``."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created < self.max_connections:
                    connection = self._open()
                    self._created += 1
                    logger.debug("Opened SQLite connection %d/%d", self._created, self.max_connections)
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as exc:
                logger.error("Dropping broken SQLite connection: %s", exc)
                with self._lock:
                    self._created -= 1
                try:
                    connection.close()
                except sqlite3.Error:
                    pass

    def close_all(self) -> None:
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            connection.close()
            with self._lock:
                self._created -= 1
