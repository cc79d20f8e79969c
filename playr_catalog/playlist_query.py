"""
Playlist Query Engine

Turns a ``PlaylistRequest`` (sort, rating floor, required tags, page window,
shuffle seed) into one parameterised SQL query over the catalog and returns
the page together with the total for the identical filter.

AND-tag filtering groups the joined tag rows per file and keeps a file only
when the number of distinct requested names it carries equals the number
requested, so any number of tags costs the same single join.
"""

from pathlib import Path
from typing import List, NamedTuple, Optional

from loguru import logger

from .database import CatalogDatabase
from .models import PlaylistItem, PlaylistRequest, PlaylistResponse, clamp_rating
from .thumbnails import ThumbnailWorker, thumbnail_path

RANDOM_MODULUS = 2147483647
MEDIA_URL_SCHEME = "plyer"
_TAG_SEPARATOR = "||"


class QueryParts(NamedTuple):
    """SQL fragments plus their positional parameters, in statement order."""

    where: str
    where_params: list
    having: str
    having_params: list
    order_by: str
    order_params: list


def normalize_seed(seed: Optional[int]) -> int:
    """Map any seed onto 1..RANDOM_MODULUS-1 without changing the resulting order."""
    value = abs(int(seed or 1)) % RANDOM_MODULUS
    return value or 1


def build_order_by(request: PlaylistRequest) -> tuple[str, list]:
    if request.sort == "filename":
        return "f.name COLLATE NOCASE ASC, f.id ASC", []
    if request.sort == "created":
        return "f.created_ms DESC, f.id DESC", []
    if request.sort == "random":
        return f"((f.id * ?) % {RANDOM_MODULUS}) ASC, f.id ASC", [normalize_seed(request.seed)]
    return "COALESCE(cm.order_index, 0) ASC, f.id ASC", []


def build_query_parts(request: PlaylistRequest) -> QueryParts:
    where = "WHERE f.is_missing = 0"
    where_params: list = []
    rating_min = clamp_rating(request.rating_min)
    if rating_min > 0:
        where += " AND f.rating >= ?"
        where_params.append(rating_min)

    tags = [t for t in dict.fromkeys(request.tags) if t.strip()]
    having = ""
    having_params: list = []
    if tags:
        placeholders = ", ".join("?" for _ in tags)
        having = (
            f"HAVING COUNT(DISTINCT CASE WHEN t.name IN ({placeholders}) "
            f"THEN t.name END) = ?"
        )
        having_params = [*tags, len(tags)]

    order_by, order_params = build_order_by(request)
    return QueryParts(where, where_params, having, having_params, order_by, order_params)


def to_media_url(absolute_path: Path | str) -> str:
    """``file:///a/b.mp4`` becomes ``plyer:///a/b.mp4``."""
    uri = Path(absolute_path).absolute().as_uri()
    return MEDIA_URL_SCHEME + uri[len("file"):]


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    names = [name for name in raw.split(_TAG_SEPARATOR) if name]
    return sorted(set(names), key=lambda name: (name.lower(), name))


def query_playlist(
    db: Optional[CatalogDatabase],
    request: PlaylistRequest,
    thumbnails: Optional[ThumbnailWorker] = None,
) -> PlaylistResponse:
    """
    Return one page of the playlist view plus the filtered total.

    With no open catalog the result is simply empty. Items whose thumbnail
    is not on disk yet get ``thumbnail_url=None`` and, when a worker is
    given, a generation request is queued without waiting for it.
    """
    if db is None or not db.is_connected():
        return PlaylistResponse(items=[], total=0)

    parts = build_query_parts(request)
    base_sql = f"""
        FROM files f
        LEFT JOIN collection_members cm
          ON cm.file_id = f.id AND cm.collection_id = ?
        LEFT JOIN file_tags ft
          ON ft.file_id = f.id
        LEFT JOIN tags t
          ON t.id = ft.tag_id
        {parts.where}
        GROUP BY f.id
        {parts.having}
    """
    filter_params = [db.library_collection_id, *parts.where_params, *parts.having_params]

    total_row = db.execute(
        f"SELECT COUNT(*) AS total FROM (SELECT f.id {base_sql})", filter_params
    ).fetchone()
    total = int(total_row["total"]) if total_row is not None else 0

    page_sql = ""
    page_params: list = []
    if request.limit:
        page_sql = "LIMIT ? OFFSET ?"
        page_params = [request.limit, request.offset]

    rows = db.execute(
        f"""
        SELECT
            f.id, f.path, f.name, f.ext, f.duration_ms, f.rating, f.size,
            f.mtime, f.created_ms, f.last_played, f.play_count,
            COALESCE(cm.order_index, 0) AS order_index,
            GROUP_CONCAT(t.name, '{_TAG_SEPARATOR}') AS tags
        {base_sql}
        ORDER BY {parts.order_by}
        {page_sql}
        """,
        [*filter_params, *parts.order_params, *page_params],
    ).fetchall()

    items = [_row_to_item(db.root, row, thumbnails) for row in rows]
    logger.debug(
        f"Playlist query sort={request.sort} rating>={request.rating_min} "
        f"tags={request.tags} -> {len(items)}/{total}"
    )
    return PlaylistResponse(items=items, total=total)


def _row_to_item(root: Path, row, thumbnails: Optional[ThumbnailWorker]) -> PlaylistItem:
    absolute_path = root / row["path"]
    thumb = thumbnail_path(root, row["path"])
    has_thumb = thumb.exists()
    if not has_thumb and thumbnails is not None:
        thumbnails.enqueue(absolute_path, thumb)

    return PlaylistItem(
        id=row["id"],
        path=row["path"],
        name=row["name"],
        ext=row["ext"],
        duration_ms=row["duration_ms"] or 0,
        rating=row["rating"] or 0,
        size=row["size"] or 0,
        mtime=row["mtime"] or 0,
        created_ms=row["created_ms"] or 0,
        last_played=row["last_played"],
        play_count=row["play_count"] or 0,
        order_index=row["order_index"] or 0,
        tags=_split_tags(row["tags"]),
        absolute_path=str(absolute_path),
        file_url=to_media_url(absolute_path),
        thumbnail_path=str(thumb) if has_thumb else None,
        thumbnail_url=to_media_url(thumb) if has_thumb else None,
    )
