"""
Restored playlist state, stored in the catalog's settings table.

Values are written as plain strings (JSON for the tag list) and parsed
leniently on the way back: anything unreadable falls back to the default
rather than failing the caller.
"""

import json
import posixpath
from typing import Optional

from .database import CatalogDatabase
from .models import PlaylistOptions, clamp_rating, clean_tag_names
from . import mutations

SETTINGS_KEYS = {
    "sort": "ui.sort",
    "rating_min": "ui.rating_min",
    "tags": "ui.tags",
    "current_media_path": "ui.current_media_path",
}


def parse_tags(value: Optional[str]) -> list[str]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return clean_tag_names(parsed)


def normalize_relative_media_path(value: Optional[str]) -> Optional[str]:
    """Root-relative '/' path, or None if empty, absolute, or escaping the root."""
    if not value:
        return None
    raw = value.replace("\\", "/")
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        return None
    normalized = posixpath.normpath(raw)
    if normalized in ("", ".") or normalized == ".." or normalized.startswith("../"):
        return None
    return normalized


def read_playlist_options(db: Optional[CatalogDatabase]) -> PlaylistOptions:
    rating_raw = mutations.get_setting(db, SETTINGS_KEYS["rating_min"])
    return PlaylistOptions(
        sort=mutations.get_setting(db, SETTINGS_KEYS["sort"]),
        rating_min=clamp_rating(rating_raw) if rating_raw is not None else 0,
        tags=parse_tags(mutations.get_setting(db, SETTINGS_KEYS["tags"])),
    )


def save_playlist_options(db: CatalogDatabase, options: PlaylistOptions) -> PlaylistOptions:
    """Persist the sanitized options and return what was stored."""
    clean = PlaylistOptions.model_validate(options.model_dump())
    with db.transaction() as conn:
        for key, value in (
            (SETTINGS_KEYS["sort"], clean.sort),
            (SETTINGS_KEYS["rating_min"], str(clean.rating_min)),
            (SETTINGS_KEYS["tags"], json.dumps(clean.tags)),
        ):
            conn.execute(
                """
                INSERT INTO settings (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
    return clean


def read_current_media_path(db: Optional[CatalogDatabase]) -> Optional[str]:
    return normalize_relative_media_path(
        mutations.get_setting(db, SETTINGS_KEYS["current_media_path"])
    )


def save_current_media_path(db: CatalogDatabase, relative_path: Optional[str]) -> Optional[str]:
    normalized = normalize_relative_media_path(relative_path)
    mutations.set_setting(db, SETTINGS_KEYS["current_media_path"], normalized)
    return normalized
