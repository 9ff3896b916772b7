"""Database connection manager for SQLite."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from appointment_coordinator.errors import StoreUnavailableError

from .schema import SCHEMA

logger = logging.getLogger(__name__)


class Database:
    """Owns the SQLite connection shared by the status and reminder repositories.

    Writes go through ``transaction()``. Nested transactions join the
    outermost one, so the coordinator can commit a status change and a
    reminder replan together. A transaction body must not await anything that
    suspends, since every coroutine shares this one connection.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._depth = 0

    def get_connection(self) -> sqlite3.Connection:
        """Get the database connection with row factory enabled."""
        if self._conn is None:
            try:
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA busy_timeout = 5000")
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
            self._conn = conn
        return self._conn

    def init_database(self) -> None:
        """Initialize the database with schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot create schema: {e}") from e

    @contextmanager
    def transaction(self):
        conn = self.get_connection()
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield conn
        except sqlite3.Error as e:
            if outermost:
                conn.rollback()
            raise StoreUnavailableError(f"Database write failed: {e}") from e
        except BaseException:
            if outermost:
                conn.rollback()
            raise
        else:
            if outermost:
                try:
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise StoreUnavailableError(f"Commit failed: {e}") from e
        finally:
            self._depth -= 1

    @contextmanager
    def reading(self):
        """Yield a cursor for queries, translating driver errors."""
        try:
            yield self.get_connection().cursor()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Database read failed: {e}") from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed database %s", self.db_path)
