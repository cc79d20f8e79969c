"""
Catalog Store for Playr

One SQLite file per root directory, stored directly beneath it. Owns the
schema, the default "Library" collection, and the transaction boundary used
by every multi-row write.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from .errors import (
    CatalogError,
    CatalogNotOpenError,
    CatalogOpenError,
    ConstraintViolationError,
    TransactionFailedError,
)


CATALOG_FILENAME = ".playr.sqlite"
LIBRARY_COLLECTION = "Library"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    ext TEXT NOT NULL,
    duration_ms INTEGER DEFAULT 0,
    size INTEGER DEFAULT 0,
    mtime INTEGER DEFAULT 0,
    created_ms INTEGER DEFAULT 0,
    rating INTEGER DEFAULT 0,
    meta TEXT,
    added_on INTEGER DEFAULT (strftime('%s','now') * 1000),
    last_played INTEGER,
    play_count INTEGER DEFAULT 0,
    is_missing INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS collections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'static',
    filter_json TEXT,
    created_on INTEGER DEFAULT (strftime('%s','now') * 1000),
    updated_on INTEGER DEFAULT (strftime('%s','now') * 1000)
);

CREATE TABLE IF NOT EXISTS collection_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    collection_id INTEGER NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
    order_index INTEGER DEFAULT 0,
    added_on INTEGER DEFAULT (strftime('%s','now') * 1000),
    UNIQUE(file_id, collection_id)
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    added_on INTEGER DEFAULT (strftime('%s','now') * 1000)
);

CREATE TABLE IF NOT EXISTS file_tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    added_on INTEGER DEFAULT (strftime('%s','now') * 1000),
    UNIQUE(file_id, tag_id)
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    value TEXT
);

CREATE INDEX IF NOT EXISTS idx_files_rating ON files(rating);
CREATE INDEX IF NOT EXISTS idx_files_name ON files(name);
CREATE INDEX IF NOT EXISTS idx_files_missing ON files(is_missing);
CREATE INDEX IF NOT EXISTS idx_collection_members_order ON collection_members(collection_id, order_index);
CREATE INDEX IF NOT EXISTS idx_file_tags_file ON file_tags(file_id);
"""


def catalog_path(root: Path | str) -> Path:
    return Path(root) / CATALOG_FILENAME


def find_catalog_root(start_dir: Path | str, levels: int = 3) -> Optional[Path]:
    """Walk up from ``start_dir`` (at most ``levels`` parents) looking for a catalog file."""
    current = Path(start_dir)
    for _ in range(levels + 1):
        if catalog_path(current).exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def is_inside_root(target: Path | str, root: Path | str) -> bool:
    target_path = Path(target).absolute()
    root_path = Path(root).absolute()
    return target_path == root_path or root_path in target_path.parents


class CatalogDatabase:
    """
    Handle on one root's catalog.

    Connections are opened in autocommit mode; ``transaction()`` issues an
    explicit ``BEGIN IMMEDIATE`` so multi-row writes commit or roll back as
    a unit and readers never observe a half-applied change.
    """

    def __init__(self, root: Path | str) -> None:
        self.root: Path = Path(root)
        self.database_path: Path = catalog_path(self.root)
        self.conn: Optional[sqlite3.Connection] = None
        self.library_collection_id: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open (creating if needed) the catalog file and bootstrap the schema."""
        if not self.root.is_dir():
            raise CatalogOpenError(str(self.root), "root is not a directory")
        try:
            conn = sqlite3.connect(
                self.database_path,
                timeout=30,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to open catalog at {self.database_path}: {e}")
            raise CatalogOpenError(str(self.root), str(e)) from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 30000")
            conn.executescript(_SCHEMA)
            self.conn = conn
            self.library_collection_id = self._ensure_library_collection()
        except (sqlite3.Error, TransactionFailedError) as e:
            conn.close()
            self.conn = None
            logger.error(f"Failed to initialise catalog at {self.database_path}: {e}")
            raise CatalogOpenError(str(self.root), str(e)) from e

        logger.info(f"Catalog opened: {self.database_path}")

    def _ensure_library_collection(self) -> int:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM collections WHERE name = ? ORDER BY id LIMIT 1",
                (LIBRARY_COLLECTION,),
            ).fetchone()
            if row is not None:
                return int(row["id"])
            cursor = conn.execute(
                "INSERT INTO collections (name, type) VALUES (?, 'static')",
                (LIBRARY_COLLECTION,),
            )
            return int(cursor.lastrowid)

    def is_connected(self) -> bool:
        return self.conn is not None

    def close(self) -> None:
        if self.conn is None:
            return
        try:
            self.conn.close()
            logger.info(f"Catalog closed: {self.database_path}")
        except sqlite3.Error as e:
            logger.warning(f"Error closing catalog: {e}")
        finally:
            self.conn = None

    def __enter__(self) -> "CatalogDatabase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def require_conn(self, operation: str = "") -> sqlite3.Connection:
        if self.conn is None:
            raise CatalogNotOpenError(operation)
        return self.conn

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        """
        Run a single autocommitted statement.

        Constraint failures raise ``ConstraintViolationError``; any other
        storage error (a lock held past the busy timeout, a bad statement)
        raises ``TransactionFailedError``, as the statement is its own
        transaction and nothing was applied.
        """
        conn = self.require_conn()
        try:
            return conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"Statement failed on {self.database_path}: {e}")
            raise TransactionFailedError(f"Statement failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the body as one atomic write.

        Any exception rolls back every statement issued inside the block and
        is re-raised as ``TransactionFailedError`` (catalog errors pass through
        unchanged, still after the rollback). Failing to begin or commit is
        reported the same way.
        """
        conn = self.require_conn("transaction")
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.error(f"Could not begin transaction on {self.database_path}: {e}")
            raise TransactionFailedError(f"Could not begin transaction: {e}") from e
        try:
            yield conn
        except BaseException as e:
            conn.execute("ROLLBACK")
            if isinstance(e, CatalogError) or not isinstance(e, Exception):
                raise
            logger.error(f"Transaction rolled back on {self.database_path}: {e}")
            raise TransactionFailedError(f"Transaction rolled back: {e}") from e
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Commit failed on {self.database_path}: {e}")
            raise TransactionFailedError(f"Commit failed: {e}") from e

    def __repr__(self) -> str:
        status = "open" if self.conn is not None else "closed"
        return f"CatalogDatabase({status}, path={self.database_path})"


def open_catalog(root: Path | str) -> CatalogDatabase:
    """Open the catalog beneath ``root``, creating it on first use."""
    db = CatalogDatabase(root)
    db.connect()
    return db
