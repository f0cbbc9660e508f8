"""
ALIGNWATCH SQLite Database

Single shared connection to the cache database with a lock around every
statement, explicit write transactions and the schema for landmarks and
alignment events.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, List, Sequence

from alignwatch.exceptions import StoreError

logger = logging.getLogger("alignwatch.Database")

SCHEMA = """
CREATE TABLE IF NOT EXISTS landmarks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    elevation REAL NOT NULL,
    azimuth_to_peak REAL NOT NULL,
    elevation_to_peak REAL NOT NULL,
    distance_to_peak REAL NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alignment_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    landmark_id INTEGER NOT NULL,
    event_date TEXT NOT NULL,
    event_time TEXT NOT NULL,
    event_epoch INTEGER NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('sun_rising', 'sun_setting', 'moon_rising', 'moon_setting')),
    azimuth REAL NOT NULL,
    elevation REAL NOT NULL,
    azimuth_diff REAL NOT NULL,
    elevation_diff REAL NOT NULL,
    quality_score REAL NOT NULL CHECK (quality_score >= 0 AND quality_score <= 100),
    accuracy TEXT NOT NULL CHECK (accuracy IN ('perfect', 'excellent', 'good', 'fair')),
    moon_phase REAL CHECK (moon_phase IS NULL OR (moon_phase >= 0 AND moon_phase <= 1)),
    moon_illumination REAL CHECK (moon_illumination IS NULL OR (moon_illumination >= 0 AND moon_illumination <= 1)),
    calculation_year INTEGER NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_events_unique
    ON alignment_events (landmark_id, event_date, kind);
CREATE INDEX IF NOT EXISTS idx_events_date ON alignment_events (event_date);
CREATE INDEX IF NOT EXISTS idx_events_epoch ON alignment_events (event_epoch);
CREATE INDEX IF NOT EXISTS idx_events_year ON alignment_events (calculation_year);
"""


class Database:
    """
    Thread-safe wrapper around one SQLite connection.

    Reads and writes from worker threads are serialized by a re-entrant
    lock; writes go through ``transaction()`` so a failure rolls the whole
    unit back.
    """

    def __init__(self, path: str | Path = ":memory:", busy_timeout: float = 30.0):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self.path,
                timeout=busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            if self.path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.path}: {e}") from e
        logger.debug(f"Opened database {self.path}")

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a block in one write transaction; roll back on any error."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Cannot begin transaction: {e}") from e
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StoreError(f"Transaction rolled back: {e}") from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._conn.execute("ROLLBACK")
                    raise StoreError(f"Commit failed: {e}") from e

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a read statement and return all rows."""
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Query failed: {e}") from e

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a read statement returning a single value."""
        rows = self.query(sql, params)
        return rows[0][0] if rows else None

    def close(self):
        with self._lock:
            self._conn.close()
