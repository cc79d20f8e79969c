"""
Data Models for the Playr Library Catalog

Catalog rows, scanner output, and the request/response shapes of the
playlist query layer.
"""

from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SORT_MODES: tuple[str, ...] = ("playlist", "filename", "created", "random")
DEFAULT_SORT = "playlist"

MIN_RATING = 0
MAX_RATING = 5

# Largest value sqlite accepts as an INTEGER bind parameter.
MAX_SQL_INTEGER = 2**63 - 1


def clamp_rating(value: object) -> int:
    """Coerce anything rating-like into the 0-5 range (junk becomes 0)."""
    try:
        rating = int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return MIN_RATING
    return max(MIN_RATING, min(MAX_RATING, rating))


def clean_tag_names(values: object) -> List[str]:
    """Drop non-string and blank tag names, de-duplicate preserving order."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        return []
    seen: set = set()
    cleaned = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        if value in seen:
            continue
        seen.add(value)
        cleaned.append(value)
    return cleaned


# ---------------------------------------------------------------------------
# Catalog rows
# ---------------------------------------------------------------------------

class MediaFile(BaseModel):
    """One catalog row for a file ever seen under the root."""

    id: int = Field(..., description="Stable catalog id, assigned on first sighting")
    path: str = Field(..., description="Root-relative path, '/' separated")
    name: str = Field(..., description="Display name (basename)")
    ext: str = Field(..., description="Lowercased extension including the dot")
    duration_ms: int = Field(0, ge=0, description="Duration in ms, 0 until first playback")
    size: int = Field(0, ge=0, description="File size in bytes")
    mtime: int = Field(0, description="Modification time, epoch ms")
    created_ms: int = Field(0, description="Creation (birth) time, epoch ms")
    rating: int = Field(0, description="0 = unrated, otherwise 1-5")
    meta: Optional[str] = Field(None, description="Reserved metadata blob")
    added_on: Optional[int] = Field(None, description="First-seen time, epoch ms")
    last_played: Optional[int] = Field(None, description="Last playback time, epoch ms")
    play_count: int = Field(0, ge=0, description="Number of recorded plays")
    is_missing: bool = Field(False, description="Not observed by the most recent scan")


class ScannedFile(BaseModel):
    """A media file observed on disk by the scanner."""

    relative_path: str
    name: str
    ext: str
    size: int = 0
    mtime: int = 0
    created_ms: int = 0


class ScanResult(BaseModel):
    """Counts reported by one reconciliation pass."""

    added: int = 0
    removed: int = 0
    updated: int = 0


# ---------------------------------------------------------------------------
# Playlist queries
# ---------------------------------------------------------------------------

class PlaylistOptions(BaseModel):
    """The user-chosen view over the catalog: sort order and filters."""

    sort: str = Field(DEFAULT_SORT, description="playlist, filename, created, random")
    rating_min: int = Field(0, description="Minimum rating, 0 = no filter")
    tags: List[str] = Field(default_factory=list, description="Required tags (AND)")

    @field_validator("sort", mode="before")
    @classmethod
    def _known_sort(cls, value: object) -> str:
        return value if value in SORT_MODES else DEFAULT_SORT

    @field_validator("rating_min", mode="before")
    @classmethod
    def _clamp_rating(cls, value: object) -> int:
        return clamp_rating(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: object) -> List[str]:
        return clean_tag_names(value)


class PlaylistRequest(PlaylistOptions):
    """A page request against the playlist view."""

    limit: Optional[int] = Field(None, description="Page size; None or 0 returns everything")
    offset: int = Field(0, description="Number of items already loaded")
    seed: Optional[int] = Field(None, description="Shuffle seed, only used by sort=random")

    @field_validator("limit", mode="before")
    @classmethod
    def _non_negative_limit(cls, value: object) -> Optional[int]:
        if value is None:
            return None
        limit = int(value)  # type: ignore[arg-type]
        return min(limit, MAX_SQL_INTEGER) if limit > 0 else None

    @field_validator("offset", mode="before")
    @classmethod
    def _non_negative_offset(cls, value: object) -> int:
        if value is None:
            return 0
        return min(max(0, int(value)), MAX_SQL_INTEGER)  # type: ignore[arg-type]


class PlaylistItem(BaseModel):
    """A catalog row enriched for display and playback."""

    id: int
    path: str
    name: str
    ext: str
    duration_ms: int = 0
    rating: int = 0
    size: int = 0
    mtime: int = 0
    created_ms: int = 0
    last_played: Optional[int] = None
    play_count: int = 0
    order_index: int = 0
    tags: List[str] = Field(default_factory=list)
    absolute_path: str
    file_url: str
    thumbnail_path: Optional[str] = None
    thumbnail_url: Optional[str] = None


class PlaylistResponse(BaseModel):
    """One page of playlist items plus the total for the same filter."""

    items: List[PlaylistItem] = Field(default_factory=list)
    total: int = 0


# ---------------------------------------------------------------------------
# Boundary models
# ---------------------------------------------------------------------------

class PathInspection(BaseModel):
    """What the catalog knows about an arbitrary path the user opened."""

    kind: str = Field(..., description="folder or file")
    path: str
    in_current_root: bool = False
    suggested_root: str
    found_catalog_root: Optional[str] = None
    file_url: Optional[str] = None


class ThumbnailJob(BaseModel):
    """A thumbnail request, and the payload of the "ready" notification."""

    source_path: str
    thumbnail_path: str
