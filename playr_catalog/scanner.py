"""
Filesystem Scanner

Walks a root directory and reports every recognized media file beneath it.
Unreadable entries are logged and skipped; one bad directory never aborts
the whole walk.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger

from .models import ScannedFile
from .thumbnails import CACHE_DIR_NAME

MEDIA_EXTENSIONS: frozenset[str] = frozenset({".mov", ".avi", ".mp4", ".webm", ".mkv"})


def normalize_extensions(values: Iterable[str]) -> frozenset[str]:
    """Lowercase extensions and make sure each starts with a dot."""
    result = set()
    for value in values:
        ext = value.strip().lower()
        if not ext:
            continue
        result.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(result)


def is_media_file(path: Path | str, extensions: Iterable[str] = MEDIA_EXTENSIONS) -> bool:
    return Path(path).suffix.lower() in extensions


def _created_ms(st: os.stat_result) -> int:
    # st_birthtime exists on macOS/BSD (and Windows on 3.12+); Linux falls back to ctime.
    birth = getattr(st, "st_birthtime", None)
    return int((birth if birth is not None else st.st_ctime) * 1000)


def scan(root: Path | str, extensions: Optional[Iterable[str]] = None) -> List[ScannedFile]:
    """
    Return every media file under ``root``, sorted by relative path.

    Relative paths always use '/' separators. Directories named ``.cache``
    (generated artifacts) are never entered, and each real directory is
    visited at most once so symlink cycles terminate.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise NotADirectoryError(f"Scan root is not a directory: {root_path}")
    exts = normalize_extensions(extensions) if extensions is not None else MEDIA_EXTENSIONS

    results: List[ScannedFile] = []
    visited: set[tuple[int, int]] = set()
    stack: List[Path] = [root_path]

    while stack:
        current = stack.pop()
        try:
            st = current.stat()
        except OSError as e:
            logger.warning(f"Scan: cannot stat {current}: {e}")
            continue
        key = (st.st_dev, st.st_ino)
        if key in visited:
            logger.warning(f"Scan: skipping already-visited directory {current} (symlink loop?)")
            continue
        visited.add(key)

        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            if current == root_path:
                raise
            logger.warning(f"Scan: cannot read directory {current}: {e}")
            continue

        for entry in entries:
            if entry.name == CACHE_DIR_NAME:
                continue
            try:
                if entry.is_dir():
                    stack.append(Path(entry.path))
                    continue
                if not entry.is_file():
                    if entry.is_symlink():
                        logger.warning(f"Scan: skipping broken symlink {entry.path}")
                    continue
                if Path(entry.name).suffix.lower() not in exts:
                    continue
                file_stat = entry.stat()
            except OSError as e:
                logger.warning(f"Scan: skipping {entry.path}: {e}")
                continue

            full_path = Path(entry.path)
            results.append(
                ScannedFile(
                    relative_path=full_path.relative_to(root_path).as_posix(),
                    name=full_path.name,
                    ext=full_path.suffix.lower(),
                    size=file_stat.st_size,
                    mtime=int(file_stat.st_mtime * 1000),
                    created_ms=_created_ms(file_stat),
                )
            )

    results.sort(key=lambda f: f.relative_path)
    logger.debug(f"Scan of {root_path} found {len(results)} media files")
    return results
