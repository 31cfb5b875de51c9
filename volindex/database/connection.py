"""Database connection management."""

import socket
import sqlite3
from pathlib import Path
from typing import Self

from .schema import create_schema


class Database:
    """SQLite database connection wrapper with context manager support."""

    def __init__(self, db_path: Path, machine_id: str | None = None):
        self.db_path = db_path
        self.machine_id = machine_id
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            create_schema(self._conn)
            self._record_machine()
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _record_machine(self) -> None:
        assert self._conn is not None
        rows = [("machine_name", socket.gethostname())]
        if self.machine_id:
            rows.append(("machine_id", self.machine_id))
        self._conn.executemany(
            """
            INSERT INTO settings(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            rows,
        )
        self._conn.commit()


def open_readonly(db_path: Path) -> sqlite3.Connection:
    """Open an existing store without creating or migrating it."""
    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    return conn
