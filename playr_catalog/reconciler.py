"""
Reconciler

Converges the catalog onto one scanner snapshot inside a single transaction:
new paths are inserted (with a fresh "Library" order index), re-seen paths
have their disk attributes refreshed and their missing flag cleared, and
paths absent from the snapshot are flagged missing. Nothing is ever deleted.
"""

import time
from typing import Iterable

from loguru import logger

from .database import CatalogDatabase
from .models import ScannedFile, ScanResult


_SELECT_EXISTING = """
    SELECT f.id, f.path, f.is_missing, cm.order_index
    FROM files f
    LEFT JOIN collection_members cm
      ON cm.file_id = f.id AND cm.collection_id = ?
"""

_INSERT_FILE = """
    INSERT INTO files (path, name, ext, duration_ms, size, mtime, created_ms,
                       rating, meta, added_on, play_count, is_missing)
    VALUES (:path, :name, :ext, 0, :size, :mtime, :created_ms,
            0, NULL, :added_on, 0, 0)
"""

_UPDATE_FILE = """
    UPDATE files
    SET name = :name,
        ext = :ext,
        size = :size,
        mtime = :mtime,
        created_ms = :created_ms,
        is_missing = 0
    WHERE id = :id
"""

_INSERT_MEMBER = """
    INSERT OR IGNORE INTO collection_members (file_id, collection_id, order_index, added_on)
    VALUES (?, ?, ?, ?)
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def reconcile(db: CatalogDatabase, files: Iterable[ScannedFile]) -> ScanResult:
    """
    Apply one scan snapshot to the catalog.

    ``removed`` counts rows that became missing during this pass, so running
    twice over an unchanged tree reports added=0, removed=0 the second time.
    Any failure rolls the whole pass back (``TransactionFailedError``).
    """
    collection_id = db.library_collection_id
    added = 0
    updated = 0
    removed = 0

    with db.transaction() as conn:
        existing = conn.execute(_SELECT_EXISTING, (collection_id,)).fetchall()
        by_path = {row["path"]: row for row in existing}

        max_row = conn.execute(
            "SELECT MAX(order_index) AS max_order FROM collection_members WHERE collection_id = ?",
            (collection_id,),
        ).fetchone()
        max_order = max_row["max_order"] if max_row is not None else None
        next_order = (max_order if max_order is not None else 0) + 1

        now = _now_ms()
        seen_ids: set[int] = set()

        for scanned in files:
            params = {
                "path": scanned.relative_path,
                "name": scanned.name,
                "ext": scanned.ext,
                "size": scanned.size,
                "mtime": scanned.mtime,
                "created_ms": scanned.created_ms,
            }
            row = by_path.get(scanned.relative_path)
            if row is None:
                cursor = conn.execute(_INSERT_FILE, {**params, "added_on": now})
                file_id = int(cursor.lastrowid)
                conn.execute(_INSERT_MEMBER, (file_id, collection_id, next_order, now))
                next_order += 1
                added += 1
            else:
                file_id = int(row["id"])
                conn.execute(_UPDATE_FILE, {**params, "id": file_id})
                if row["order_index"] is None:
                    conn.execute(_INSERT_MEMBER, (file_id, collection_id, next_order, now))
                    next_order += 1
                updated += 1
            seen_ids.add(file_id)

        for row in existing:
            if row["id"] in seen_ids or row["is_missing"]:
                continue
            conn.execute("UPDATE files SET is_missing = 1 WHERE id = ?", (row["id"],))
            removed += 1

    result = ScanResult(added=added, removed=removed, updated=updated)
    logger.info(
        f"Reconciled {db.root}: {added} added, {removed} removed, {updated} updated"
    )
    return result
