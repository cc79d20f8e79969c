"""
Process configuration, read from PLAYR_* environment variables.
"""

import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from .scanner import MEDIA_EXTENSIONS, normalize_extensions

_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in _FALSE_VALUES


class CatalogConfig(BaseModel):
    """Runtime settings for the server and command line."""

    root: Optional[Path] = Field(None, description="Root opened at start-up")
    host: str = Field("127.0.0.1", description="HTTP bind host")
    port: int = Field(8890, ge=1, le=65535, description="HTTP port")
    log_level: str = Field("INFO", description="loguru sink level")
    thumbnails_enabled: bool = Field(True, description="Run the ffmpeg thumbnail worker")
    ffmpeg_path: Optional[str] = Field(None, description="ffmpeg executable; PATH lookup if unset")
    media_extensions: frozenset[str] = Field(default=MEDIA_EXTENSIONS)

    @classmethod
    def from_env(cls) -> "CatalogConfig":
        root = os.environ.get("PLAYR_ROOT", "").strip()
        port_raw = os.environ.get("PLAYR_PORT", "").strip()
        try:
            port = int(port_raw) if port_raw else 8890
        except ValueError:
            logger.warning(f"PLAYR_PORT={port_raw!r} is not a number, using 8890")
            port = 8890
        exts_raw = os.environ.get("PLAYR_MEDIA_EXTENSIONS", "").strip()
        extensions = normalize_extensions(exts_raw.split(",")) if exts_raw else MEDIA_EXTENSIONS

        return cls(
            root=Path(root).expanduser() if root else None,
            host=os.environ.get("PLAYR_HOST", "").strip() or "127.0.0.1",
            port=port,
            log_level=(os.environ.get("PLAYR_LOG_LEVEL", "").strip() or "INFO").upper(),
            thumbnails_enabled=_env_flag("PLAYR_THUMBNAILS", True),
            ffmpeg_path=os.environ.get("PLAYR_FFMPEG", "").strip() or None,
            media_extensions=extensions or MEDIA_EXTENSIONS,
        )
