"""
Library Manager

The one object collaborators talk to: it owns the currently open root and
its catalog handle, and routes scans, playlist queries, and mutations to the
right module. Several managers can coexist in one process (one per root).
"""

from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from . import mutations, settings
from .database import CatalogDatabase, find_catalog_root, is_inside_root, open_catalog
from .errors import CatalogNotOpenError
from .models import (
    MediaFile,
    PathInspection,
    PlaylistOptions,
    PlaylistRequest,
    PlaylistResponse,
    ScanResult,
)
from .playlist_query import query_playlist, to_media_url
from .reconciler import reconcile
from .scanner import MEDIA_EXTENSIONS, scan
from .thumbnails import ThumbnailWorker


class LibraryManager:
    """Owns at most one open catalog at a time; swap it with ``set_root()``."""

    def __init__(
        self,
        thumbnails: Optional[ThumbnailWorker] = None,
        extensions: Iterable[str] = MEDIA_EXTENSIONS,
    ) -> None:
        self.thumbnails = thumbnails
        self.extensions = frozenset(extensions)
        self.db: Optional[CatalogDatabase] = None

    # ------------------------------------------------------------------
    # Root lifecycle
    # ------------------------------------------------------------------

    @property
    def root(self) -> Optional[Path]:
        return self.db.root if self.db is not None else None

    def is_open(self) -> bool:
        return self.db is not None and self.db.is_connected()

    def set_root(self, root: Path | str) -> CatalogDatabase:
        """Open ``root``'s catalog (creating it if needed), closing any previous one."""
        db = open_catalog(Path(root))
        previous, self.db = self.db, db
        if previous is not None:
            previous.close()
        logger.info(f"Library root set to {db.root}")
        return db

    def close(self) -> None:
        if self.db is not None:
            self.db.close()
            self.db = None

    def _require_db(self, operation: str) -> CatalogDatabase:
        if self.db is None or not self.db.is_connected():
            raise CatalogNotOpenError(operation)
        return self.db

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def scan(self) -> ScanResult:
        """Walk the root and reconcile the catalog with what is on disk."""
        db = self._require_db("scan")
        files = scan(db.root, self.extensions)
        return reconcile(db, files)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_playlist(self, request: PlaylistRequest) -> PlaylistResponse:
        return query_playlist(self.db, request, self.thumbnails)

    def list_tags(self) -> List[str]:
        return mutations.list_tags(self.db)

    def get_file(self, file_id: int) -> Optional[MediaFile]:
        return mutations.get_file(self.db, file_id)

    def get_file_tags(self, file_id: int) -> List[str]:
        return mutations.get_file_tags(self.db, file_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_rating(self, file_id: int, rating: int) -> None:
        mutations.set_rating(self._require_db("set_rating"), file_id, rating)

    def set_duration(self, file_id: int, duration_ms: int) -> None:
        mutations.set_duration(self._require_db("set_duration"), file_id, duration_ms)

    def record_play(self, file_id: int) -> None:
        mutations.record_play(self._require_db("record_play"), file_id)

    def toggle_tag(self, file_id: int, tag_name: str) -> bool:
        return mutations.toggle_tag(self._require_db("toggle_tag"), file_id, tag_name)

    def add_tag(self, tag_name: str) -> None:
        mutations.add_tag(self._require_db("add_tag"), tag_name)

    def save_order(self, file_ids: Sequence[int]) -> int:
        return mutations.save_order(self._require_db("save_order"), file_ids)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, name: str) -> Optional[str]:
        return mutations.get_setting(self.db, name)

    def set_setting(self, name: str, value: Optional[str]) -> None:
        mutations.set_setting(self._require_db("set_setting"), name, value)

    def get_playlist_options(self) -> PlaylistOptions:
        return settings.read_playlist_options(self.db)

    def save_playlist_options(self, options: PlaylistOptions) -> PlaylistOptions:
        return settings.save_playlist_options(self._require_db("save_playlist_options"), options)

    def current_media_path(self) -> Optional[Path]:
        """Absolute path of the last media file the user had open, if any."""
        relative = settings.read_current_media_path(self.db)
        if relative is None or self.root is None:
            return None
        return self.root / relative

    def set_current_media_path(self, relative_path: Optional[str]) -> Optional[str]:
        return settings.save_current_media_path(
            self._require_db("set_current_media_path"), relative_path
        )

    # ------------------------------------------------------------------
    # Path inspection
    # ------------------------------------------------------------------

    def inspect_path(self, target: Path | str) -> PathInspection:
        """
        Describe a folder or file the user asked to open: whether it lies in
        the current root, which root to suggest, and whether a catalog
        already exists there (or up to three levels above, for files).
        """
        target_path = Path(target)
        if not target_path.exists():
            raise FileNotFoundError(f"No such file or directory: {target_path}")
        in_root = self.root is not None and is_inside_root(target_path, self.root)

        if target_path.is_dir():
            found = find_catalog_root(target_path, levels=0)
            return PathInspection(
                kind="folder",
                path=str(target_path),
                in_current_root=in_root,
                suggested_root=str(target_path),
                found_catalog_root=str(found) if found else None,
            )

        parent = target_path.parent
        found = find_catalog_root(parent, levels=3)
        return PathInspection(
            kind="file",
            path=str(target_path),
            in_current_root=in_root,
            suggested_root=str(parent),
            found_catalog_root=str(found) if found else None,
            file_url=to_media_url(target_path),
        )

    def __repr__(self) -> str:
        return f"LibraryManager(root={self.root})"
