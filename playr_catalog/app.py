"""
FastAPI boundary for the Playr Library Catalog

Endpoints:
  GET  /api/state                       - Current root and restored playlist options
  POST /api/library/root                - Open (or create) the catalog for a root
  POST /api/library/scan                - Rescan the root, returns added/removed/updated
  GET  /api/library/inspect             - Describe a path the user wants to open
  POST /api/playlist                    - One page of the playlist view
  POST /api/playlist/order              - Save the manual "Library" order
  POST /api/files/{id}/rating           - Set a rating
  POST /api/files/{id}/duration         - Record a duration learned during playback
  POST /api/files/{id}/played           - Record a play
  POST /api/files/{id}/tags/toggle      - Toggle a tag on a file
  GET  /api/tags                        - Tag vocabulary
  POST /api/tags                        - Add a tag to the vocabulary
  GET  /api/settings/playlist-options   - Restored sort/rating/tags
  PUT  /api/settings/playlist-options   - Persist sort/rating/tags
  GET  /api/settings/{name}             - Raw setting value
  PUT  /api/settings/{name}             - Upsert a raw setting value
  GET  /api/thumbnails/events           - "Thumbnail ready" events after a sequence number
"""

import itertools
import sys
import threading
from collections import deque
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Path
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from .config import CatalogConfig
from .errors import (
    CatalogNotOpenError,
    CatalogOpenError,
    ConstraintViolationError,
    TransactionFailedError,
)
from .library import LibraryManager
from .models import (
    MAX_SQL_INTEGER,
    PlaylistOptions,
    PlaylistRequest,
    ThumbnailJob,
    clamp_rating,
)
from .thumbnails import ThumbnailWorker

_EVENT_BACKLOG = 500

FileId = Annotated[int, Path(ge=0, le=MAX_SQL_INTEGER)]


# ---------------------------------------------------------------------------
# Thumbnail "ready" channel
# ---------------------------------------------------------------------------

class ThumbnailEventLog:
    """Bounded, sequence-numbered log of thumbnail-ready notifications."""

    def __init__(self, maxlen: int = _EVENT_BACKLOG) -> None:
        self._events: deque = deque(maxlen=maxlen)
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self, job: ThumbnailJob) -> None:
        with self._lock:
            self._events.append({"seq": next(self._seq), **job.model_dump()})

    def after(self, seq: int) -> list:
        with self._lock:
            return [event for event in self._events if event["seq"] > seq]


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

class RootRequest(BaseModel):
    root: str


class OrderRequest(BaseModel):
    file_ids: List[Annotated[int, Field(ge=0, le=MAX_SQL_INTEGER)]] = Field(default_factory=list)


class RatingRequest(BaseModel):
    rating: int


class DurationRequest(BaseModel):
    duration_ms: int = Field(..., ge=0, le=MAX_SQL_INTEGER)


class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1)


class SettingValue(BaseModel):
    value: Optional[str] = None


def create_app(
    config: Optional[CatalogConfig] = None,
    library: Optional[LibraryManager] = None,
) -> FastAPI:
    """
    Build the HTTP app around one ``LibraryManager``.

    Every call into the manager holds ``lock``: the catalog handle is shared
    by FastAPI's worker threads and must be used by one of them at a time.
    """
    config = config or CatalogConfig.from_env()
    if library is None:
        worker = ThumbnailWorker(config.ffmpeg_path) if config.thumbnails_enabled else None
        library = LibraryManager(thumbnails=worker, extensions=config.media_extensions)
    events = ThumbnailEventLog()
    lock = threading.Lock()
    unsubscribe = library.thumbnails.subscribe(events) if library.thumbnails else None

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        if config.root is not None and not library.is_open():
            try:
                library.set_root(config.root)
            except CatalogOpenError as e:
                logger.error(f"Could not open PLAYR_ROOT: {e}")
        if library.thumbnails is not None and not library.thumbnails.available:
            logger.warning("ffmpeg not found. Thumbnails disabled.")
        logger.info(f"Playr catalog ready (root={library.root})")

        yield

        if unsubscribe is not None:
            unsubscribe()
        if library.thumbnails is not None:
            library.thumbnails.stop()
        library.close()

    app = FastAPI(title="Playr Library Catalog", lifespan=lifespan)
    app.state.library = library
    app.state.thumbnail_events = events

    def _call(fn, *args):
        try:
            with lock:
                return fn(*args)
        except (CatalogNotOpenError, ConstraintViolationError) as e:
            raise HTTPException(status_code=409, detail=str(e))
        except CatalogOpenError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except TransactionFailedError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))

    # -----------------------------------------------------------------------
    # Library
    # -----------------------------------------------------------------------

    @app.get("/api/state")
    def state():
        def _state():
            current = library.current_media_path()
            return {
                "root": str(library.root) if library.root else None,
                "options": library.get_playlist_options().model_dump(),
                "current_media_path": str(current) if current else None,
                "thumbnails": bool(library.thumbnails and library.thumbnails.available),
            }
        return JSONResponse(_call(_state))

    @app.post("/api/library/root")
    def set_root(body: RootRequest):
        _call(library.set_root, body.root)
        return {"root": str(library.root)}

    @app.post("/api/library/scan")
    def scan_library():
        result = _call(library.scan)
        return JSONResponse(result.model_dump())

    @app.get("/api/library/inspect")
    def inspect_path(path: str):
        inspection = _call(library.inspect_path, path)
        return JSONResponse(inspection.model_dump())

    # -----------------------------------------------------------------------
    # Playlist
    # -----------------------------------------------------------------------

    @app.post("/api/playlist")
    def get_playlist(request: PlaylistRequest):
        response = _call(library.get_playlist, request)
        return JSONResponse(response.model_dump())

    @app.post("/api/playlist/order")
    def save_order(body: OrderRequest):
        changed = _call(library.save_order, body.file_ids)
        return {"success": True, "updated": changed}

    # -----------------------------------------------------------------------
    # Files
    # -----------------------------------------------------------------------

    @app.post("/api/files/{file_id}/rating")
    def set_rating(file_id: FileId, body: RatingRequest):
        _call(library.set_rating, file_id, clamp_rating(body.rating))
        return {"success": True}

    @app.post("/api/files/{file_id}/duration")
    def set_duration(file_id: FileId, body: DurationRequest):
        _call(library.set_duration, file_id, body.duration_ms)
        return {"success": True}

    @app.post("/api/files/{file_id}/played")
    def record_play(file_id: FileId):
        _call(library.record_play, file_id)
        return {"success": True}

    @app.post("/api/files/{file_id}/tags/toggle")
    def toggle_tag(file_id: FileId, body: TagRequest):
        tagged = _call(library.toggle_tag, file_id, body.tag)
        return {"success": True, "tagged": tagged}

    # -----------------------------------------------------------------------
    # Tags
    # -----------------------------------------------------------------------

    @app.get("/api/tags")
    def list_tags():
        return JSONResponse(_call(library.list_tags))

    @app.post("/api/tags")
    def add_tag(body: TagRequest):
        _call(library.add_tag, body.tag)
        return {"success": True}

    # -----------------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------------

    @app.get("/api/settings/playlist-options")
    def get_playlist_options():
        return JSONResponse(_call(library.get_playlist_options).model_dump())

    @app.put("/api/settings/playlist-options")
    def save_playlist_options(body: PlaylistOptions):
        return JSONResponse(_call(library.save_playlist_options, body).model_dump())

    @app.get("/api/settings/{name}")
    def get_setting(name: str):
        return {"name": name, "value": _call(library.get_setting, name)}

    @app.put("/api/settings/{name}")
    def set_setting(name: str, body: SettingValue):
        _call(library.set_setting, name, body.value)
        return {"name": name, "value": body.value}

    # -----------------------------------------------------------------------
    # Thumbnails
    # -----------------------------------------------------------------------

    @app.get("/api/thumbnails/events")
    def thumbnail_events(after: int = 0):
        return JSONResponse(events.after(after))

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(config: Optional[CatalogConfig] = None) -> None:
    config = config or CatalogConfig.from_env()
    logger.remove()
    logger.add(sys.stderr, level=config.log_level)
    logger.info(f"Starting Playr catalog on {config.host}:{config.port}")
    uvicorn.run(create_app(config), host=config.host, port=config.port, reload=False)


if __name__ == "__main__":
    main()
