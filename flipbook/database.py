"""
SQLite Record Store
===================
Persistent storage for flipbook records in two disjoint collections:

    flipbooks     → Tier.PUBLIC   (approved, publicly listed)
    team_member   → Tier.PENDING  (awaiting review, carries uid)

Provides single-record CRUD plus an atomic multi-record transaction used to
move a record between collections. No in-memory caching; always reads
from disk.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import RecordStoreError, TransactionError
from .models import FlipbookRecord, Tier

logger = logging.getLogger(__name__)

# Default database path: project_root/database.sqlite
_DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "database.sqlite")

_TABLES = {
    Tier.PUBLIC: "flipbooks",
    Tier.PENDING: "team_member",
}

_COLUMNS = (
    "category", "subcategory", "pdf_name", "pdf_path_in_storage",
    "image_folder_path", "page_image_urls", "thumbnail_url", "timestamp",
    "uid",
)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS {table} (
        book_id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        subcategory TEXT NOT NULL,
        pdf_name TEXT NOT NULL,
        pdf_path_in_storage TEXT NOT NULL,
        image_folder_path TEXT NOT NULL,
        page_image_urls TEXT NOT NULL DEFAULT '[]',
        thumbnail_url TEXT,
        timestamp TEXT NOT NULL,
        uid TEXT
    );
"""


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("FLIPBOOK_DB_PATH", _DEFAULT_DB_PATH)


def table_for(tier: Tier) -> str:
    return _TABLES[Tier(tier)]


# ─── Interface ────────────────────────────────────────────────────────────────


class RecordTransaction(ABC):
    """Reads and writes that commit or roll back together."""

    @abstractmethod
    def get(self, tier: Tier, book_id: str) -> Optional[FlipbookRecord]:
        ...

    @abstractmethod
    def put(self, tier: Tier, record: FlipbookRecord) -> None:
        ...

    @abstractmethod
    def delete(self, tier: Tier, book_id: str) -> bool:
        ...


class RecordStore(ABC):
    """Abstract record store with two named collections."""

    @abstractmethod
    def get(self, tier: Tier, book_id: str) -> Optional[FlipbookRecord]:
        ...

    @abstractmethod
    def put(self, tier: Tier, record: FlipbookRecord) -> None:
        """Create or overwrite the record under ``record.book_id``."""

    @abstractmethod
    def update(self, tier: Tier, book_id: str, **fields) -> bool:
        """Update selected fields in place. Returns True if the record existed."""

    @abstractmethod
    def delete(self, tier: Tier, book_id: str) -> bool:
        ...

    @abstractmethod
    def list_records(self, tier: Tier) -> list[FlipbookRecord]:
        ...

    @abstractmethod
    def transaction(self):
        """
        Context manager yielding a RecordTransaction.
        Commits on normal exit, rolls back if the block raises.
        """


# ─── SQLite Implementation ────────────────────────────────────────────────────


def _row_to_record(row: sqlite3.Row) -> FlipbookRecord:
    data = dict(row)
    return FlipbookRecord(
        book_id=data["book_id"],
        category=data["category"],
        subcategory=data["subcategory"],
        pdf_name=data["pdf_name"],
        pdf_path_in_storage=data["pdf_path_in_storage"],
        image_folder_path=data["image_folder_path"],
        page_image_urls=json.loads(data["page_image_urls"] or "[]"),
        thumbnail_url=data["thumbnail_url"],
        timestamp=data["timestamp"],
        uid=data["uid"],
    )


def _record_values(record: FlipbookRecord) -> list:
    return [
        record.category,
        record.subcategory,
        record.pdf_name,
        record.pdf_path_in_storage,
        record.image_folder_path,
        json.dumps(record.page_image_urls),
        record.thumbnail_url,
        record.timestamp,
        record.uid,
    ]


def _select(conn: sqlite3.Connection, tier: Tier, book_id: str):
    return conn.execute(
        f"SELECT * FROM {table_for(tier)} WHERE book_id = ?", (book_id,)
    ).fetchone()


def _upsert(conn: sqlite3.Connection, tier: Tier, record: FlipbookRecord):
    if not record.book_id:
        raise RecordStoreError("Record has no book_id")
    placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
    conn.execute(
        f"INSERT OR REPLACE INTO {table_for(tier)} "
        f"(book_id, {', '.join(_COLUMNS)}) VALUES ({placeholders})",
        [record.book_id] + _record_values(record),
    )


def _delete(conn: sqlite3.Connection, tier: Tier, book_id: str) -> bool:
    cursor = conn.execute(
        f"DELETE FROM {table_for(tier)} WHERE book_id = ?", (book_id,)
    )
    return cursor.rowcount > 0


class SQLiteTransaction(RecordTransaction):
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get(self, tier: Tier, book_id: str) -> Optional[FlipbookRecord]:
        row = _select(self._conn, tier, book_id)
        return _row_to_record(row) if row else None

    def put(self, tier: Tier, record: FlipbookRecord) -> None:
        _upsert(self._conn, tier, record)

    def delete(self, tier: Tier, book_id: str) -> bool:
        return _delete(self._conn, tier, book_id)


class SQLiteRecordStore(RecordStore):
    """
    SQLite-backed RecordStore.
    Opens one connection per call; transactions take the write lock up
    front (BEGIN IMMEDIATE) so concurrent moves serialize.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or get_db_path()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Ensures proper commit/rollback and connection cleanup.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RecordStoreError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self):
        """
        Initialize the database schema.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing database at: {self.db_path}")
        with self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for table in _TABLES.values():
                conn.executescript(_SCHEMA.format(table=table))
        logger.info("Database schema initialized successfully")

    # ─── Single-record operations ─────────────────────────────────────────

    def get(self, tier: Tier, book_id: str) -> Optional[FlipbookRecord]:
        with self.get_connection() as conn:
            row = _select(conn, tier, book_id)
            return _row_to_record(row) if row else None

    def put(self, tier: Tier, record: FlipbookRecord) -> None:
        with self.get_connection() as conn:
            _upsert(conn, tier, record)
        logger.info(f"Record {record.book_id} written to '{table_for(tier)}'")

    def update(self, tier: Tier, book_id: str, **fields) -> bool:
        """Update record fields. Returns True if row was found."""
        fields = {k: v for k, v in fields.items() if k in _COLUMNS}
        if not fields:
            return False
        if "page_image_urls" in fields:
            fields["page_image_urls"] = json.dumps(fields["page_image_urls"])

        set_clause = ", ".join(f"{k} = ?" for k in fields)
        values = list(fields.values()) + [book_id]

        with self.get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table_for(tier)} SET {set_clause} WHERE book_id = ?",
                values,
            )
            return cursor.rowcount > 0

    def delete(self, tier: Tier, book_id: str) -> bool:
        with self.get_connection() as conn:
            return _delete(conn, tier, book_id)

    def list_records(self, tier: Tier) -> list[FlipbookRecord]:
        with self.get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM {table_for(tier)} ORDER BY timestamp DESC"
            ).fetchall()
            return [_row_to_record(r) for r in rows]

    # ─── Transactions ─────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[SQLiteTransaction]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        except sqlite3.Error as e:
            raise TransactionError(f"Cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield SQLiteTransaction(conn)
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise TransactionError(f"Transaction failed: {e}") from e
        finally:
            conn.close()
