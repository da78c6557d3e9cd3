"""SQLite connection and transaction management for the tiddler database."""

import sqlite3
import logging
from pathlib import Path
from typing import Iterator, Union
from contextlib import contextmanager


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(Exception):
    """Exception raised when a tiddler, user or token does not exist."""
    pass


class DatabaseManager:
    """Manages SQLite connections and transactions for the tiddler database.

    Every call to :meth:`transaction` opens its own connection, so a
    transaction never outlives the operation that started it.
    """

    def __init__(self, db_path: Union[str, Path], busy_timeout_ms: int = 5000):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long a connection waits on a locked database
        """
        if not db_path:
            raise StorageError("database path required")

        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._ensure_database_exists()

    def _ensure_database_exists(self) -> None:
        """Create the parent directory and switch the database to WAL."""
        try:
            self.db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory: {e}")

        with self._get_connection() as conn:
            # WAL lets readers proceed while a writer holds its transaction.
            mode = conn.execute("PRAGMA journal_mode = wal").fetchone()[0]
            logger.debug(f"Opened {self.db_path} (journal_mode={mode})")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with proper error handling.

        Connections run in autocommit mode; transactions are opened
        explicitly by :meth:`transaction`.
        """
        conn = None
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            raise StorageError(f"Database operation failed: {e}")
        finally:
            if conn:
                conn.close()

    @contextmanager
    def transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction.

        The transaction commits only when the block finishes normally. Any
        exception, including interruption or cancellation, rolls it back.

        Args:
            write: Take the write lock up front (BEGIN IMMEDIATE)
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.rollback()
                raise
            else:
                conn.commit()

    def get_schema_version(self) -> int:
        """Get the schema version stored in the database header."""
        with self._get_connection() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def table_exists(self, name: str) -> bool:
        """Check whether a table exists in the database."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (name,),
            ).fetchone()
            return row is not None
