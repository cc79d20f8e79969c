"""
Mutation API

Small writes the next playlist query must observe immediately: ratings,
durations, play statistics, tags, manual order, and key/value settings.
Writes against unknown file ids touch zero rows and return normally.
"""

import time
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from .database import CatalogDatabase
from .models import MediaFile


def _now_ms() -> int:
    return int(time.time() * 1000)


def _file_exists(conn, file_id: int) -> bool:
    return conn.execute("SELECT 1 FROM files WHERE id = ?", (file_id,)).fetchone() is not None


# ------------------------------------------------------------------
# File statistics
# ------------------------------------------------------------------

def set_rating(db: CatalogDatabase, file_id: int, rating: int) -> None:
    """Overwrite the rating. Range checks belong to the caller."""
    cursor = db.execute("UPDATE files SET rating = ? WHERE id = ?", (rating, file_id))
    if cursor.rowcount == 0:
        logger.debug(f"set_rating: no file with id {file_id}")


def set_duration(db: CatalogDatabase, file_id: int, duration_ms: int) -> None:
    cursor = db.execute("UPDATE files SET duration_ms = ? WHERE id = ?", (duration_ms, file_id))
    if cursor.rowcount == 0:
        logger.debug(f"set_duration: no file with id {file_id}")


def record_play(db: CatalogDatabase, file_id: int) -> None:
    """Stamp last_played with now and bump play_count by exactly one."""
    cursor = db.execute(
        "UPDATE files SET last_played = ?, play_count = COALESCE(play_count, 0) + 1 WHERE id = ?",
        (_now_ms(), file_id),
    )
    if cursor.rowcount == 0:
        logger.debug(f"record_play: no file with id {file_id}")


# ------------------------------------------------------------------
# Tags
# ------------------------------------------------------------------

def _ensure_tag(conn, tag_name: str) -> int:
    row = conn.execute("SELECT id FROM tags WHERE name = ?", (tag_name,)).fetchone()
    if row is not None:
        return int(row["id"])
    cursor = conn.execute(
        "INSERT INTO tags (name, added_on) VALUES (?, ?)", (tag_name, _now_ms())
    )
    return int(cursor.lastrowid)


def add_tag(db: CatalogDatabase, tag_name: str) -> None:
    """Make sure a tag exists in the vocabulary without attaching it to a file."""
    db.execute(
        "INSERT OR IGNORE INTO tags (name, added_on) VALUES (?, ?)", (tag_name, _now_ms())
    )


def toggle_tag(db: CatalogDatabase, file_id: int, tag_name: str) -> bool:
    """
    Attach ``tag_name`` to the file if absent, detach it if present.

    The tag row is created on demand and is kept after its last association
    goes away. Returns True when the file carries the tag afterwards.
    """
    with db.transaction() as conn:
        tag_id = _ensure_tag(conn, tag_name)
        if not _file_exists(conn, file_id):
            logger.debug(f"toggle_tag: no file with id {file_id}")
            return False
        existing = conn.execute(
            "SELECT id FROM file_tags WHERE file_id = ? AND tag_id = ?", (file_id, tag_id)
        ).fetchone()
        if existing is not None:
            conn.execute("DELETE FROM file_tags WHERE id = ?", (existing["id"],))
            return False
        conn.execute(
            "INSERT OR IGNORE INTO file_tags (file_id, tag_id, added_on) VALUES (?, ?, ?)",
            (file_id, tag_id, _now_ms()),
        )
        return True


def list_tags(db: Optional[CatalogDatabase]) -> List[str]:
    """All known tag names, case-insensitive first, then exact."""
    if db is None or not db.is_connected():
        return []
    rows = db.execute(
        "SELECT name FROM tags ORDER BY name COLLATE NOCASE ASC, name ASC"
    ).fetchall()
    return [row["name"] for row in rows]


def get_file_tags(db: Optional[CatalogDatabase], file_id: int) -> List[str]:
    if db is None or not db.is_connected():
        return []
    rows = db.execute(
        """
        SELECT t.name FROM file_tags ft
        JOIN tags t ON t.id = ft.tag_id
        WHERE ft.file_id = ?
        ORDER BY t.name COLLATE NOCASE ASC, t.name ASC
        """,
        (file_id,),
    ).fetchall()
    return [row["name"] for row in rows]


# ------------------------------------------------------------------
# Manual order
# ------------------------------------------------------------------

def save_order(db: CatalogDatabase, file_ids: Sequence[int]) -> int:
    """
    Move the given "Library" members to the front, numbered 0..n-1 in list order.

    Members not in the list follow at n, n+1, ... in their previous relative
    order, so indices stay dense and unique across the whole collection.
    Unknown or repeated ids are skipped. Runs in one transaction so readers
    see either the old or the new order. Returns how many of the listed
    memberships were renumbered.
    """
    collection_id = db.library_collection_id
    requested = list(dict.fromkeys(file_ids))
    with db.transaction() as conn:
        current = conn.execute(
            """
            SELECT file_id FROM collection_members
            WHERE collection_id = ?
            ORDER BY order_index ASC, file_id ASC
            """,
            (collection_id,),
        ).fetchall()
        members = [int(row["file_id"]) for row in current]
        member_set = set(members)

        listed = [file_id for file_id in requested if file_id in member_set]
        listed_set = set(listed)
        rest = [file_id for file_id in members if file_id not in listed_set]

        for index, file_id in enumerate(listed + rest):
            conn.execute(
                "UPDATE collection_members SET order_index = ? WHERE file_id = ? AND collection_id = ?",
                (index, file_id, collection_id),
            )
        changed = len(listed)
        conn.execute(
            "UPDATE collections SET updated_on = ? WHERE id = ?", (_now_ms(), collection_id)
        )
    logger.debug(f"save_order: moved {changed} of {len(file_ids)} listed members to the front")
    return changed


def list_collection_order(db: Optional[CatalogDatabase]) -> List[Tuple[int, int]]:
    """``(file_id, order_index)`` for every "Library" member, in playlist order."""
    if db is None or not db.is_connected():
        return []
    rows = db.execute(
        """
        SELECT file_id, order_index FROM collection_members
        WHERE collection_id = ?
        ORDER BY order_index ASC, file_id ASC
        """,
        (db.library_collection_id,),
    ).fetchall()
    return [(int(row["file_id"]), int(row["order_index"])) for row in rows]


# ------------------------------------------------------------------
# Row accessors
# ------------------------------------------------------------------

def _row_to_media_file(row) -> MediaFile:
    return MediaFile(
        id=row["id"],
        path=row["path"],
        name=row["name"],
        ext=row["ext"],
        duration_ms=row["duration_ms"] or 0,
        size=row["size"] or 0,
        mtime=row["mtime"] or 0,
        created_ms=row["created_ms"] or 0,
        rating=row["rating"] or 0,
        meta=row["meta"],
        added_on=row["added_on"],
        last_played=row["last_played"],
        play_count=row["play_count"] or 0,
        is_missing=bool(row["is_missing"]),
    )


def get_file(db: Optional[CatalogDatabase], file_id: int) -> Optional[MediaFile]:
    """Fetch one row by id, missing rows included."""
    if db is None or not db.is_connected():
        return None
    row = db.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
    return _row_to_media_file(row) if row is not None else None


def get_file_by_path(db: Optional[CatalogDatabase], relative_path: str) -> Optional[MediaFile]:
    if db is None or not db.is_connected():
        return None
    row = db.execute("SELECT * FROM files WHERE path = ?", (relative_path,)).fetchone()
    return _row_to_media_file(row) if row is not None else None


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------

def get_setting(db: Optional[CatalogDatabase], name: str) -> Optional[str]:
    if db is None or not db.is_connected():
        return None
    row = db.execute("SELECT value FROM settings WHERE name = ?", (name,)).fetchone()
    return row["value"] if row is not None else None


def set_setting(db: CatalogDatabase, name: str, value: Optional[str]) -> None:
    """Insert-or-update by key; last writer wins."""
    db.execute(
        """
        INSERT INTO settings (name, value) VALUES (?, ?)
        ON CONFLICT(name) DO UPDATE SET value = excluded.value
        """,
        (name, value),
    )
