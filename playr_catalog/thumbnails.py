"""
Thumbnail cache and background worker.

Thumbnails live under ``<root>/.cache/thumbnails/<sha1 of relative path>.jpg``.
The catalog only ever computes that path and checks whether it exists; the
image itself is produced by ``ThumbnailWorker``, a single background thread
that shells out to ffmpeg and notifies subscribers when a file is ready.
"""

from __future__ import annotations

import hashlib
import queue
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .models import ThumbnailJob

CACHE_DIR_NAME = ".cache"
THUMBNAIL_DIR_NAME = "thumbnails"

# Frame grab: 2s in, one frame, 320px wide, aspect preserved.
_SEEK = "00:00:02"
_SCALE = "scale=320:-1"
_JOB_TIMEOUT_SECONDS = 120

ThumbnailListener = Callable[[ThumbnailJob], None]


def thumbnail_path(root: Path | str, relative_path: str) -> Path:
    digest = hashlib.sha1(relative_path.encode("utf-8")).hexdigest()
    return Path(root) / CACHE_DIR_NAME / THUMBNAIL_DIR_NAME / f"{digest}.jpg"


def _ffmpeg_args(ffmpeg: str, source: str, dest: str) -> list[str]:
    return [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-ss", _SEEK,
        "-i", source,
        "-frames:v", "1",
        "-vf", _SCALE,
        dest,
    ]


class ThumbnailWorker:
    """
    Fire-and-forget thumbnail generation.

    ``enqueue()`` never blocks on ffmpeg: jobs go onto a FIFO queue consumed
    by one daemon thread. Subscribers registered with ``subscribe()`` are
    called from that thread with a ``ThumbnailJob`` once the image exists.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None) -> None:
        self.ffmpeg_path: Optional[str] = ffmpeg_path or shutil.which("ffmpeg")
        self._queue: "queue.Queue[Optional[ThumbnailJob]]" = queue.Queue()
        self._pending: set[str] = set()
        self._listeners: list[ThumbnailListener] = []
        self._lock = threading.Lock()  # guards _pending, _listeners, _thread
        self._thread: Optional[threading.Thread] = None

    @property
    def available(self) -> bool:
        return bool(self.ffmpeg_path)

    # ------------------------------------------------------------------
    # Notification channel
    # ------------------------------------------------------------------

    def subscribe(self, listener: ThumbnailListener) -> Callable[[], None]:
        """Register a "thumbnail ready" listener; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, job: ThumbnailJob) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(job)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Thumbnail listener failed for {job.thumbnail_path}: {e}")

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, source_path: Path | str, dest_path: Path | str) -> bool:
        """
        Request a thumbnail for ``source_path`` at ``dest_path``.

        Returns False (and does nothing) when ffmpeg is unavailable, the
        thumbnail already exists, or the same destination is already queued.
        """
        if not self.available:
            return False
        dest = str(dest_path)
        if Path(dest).exists():
            return False
        with self._lock:
            if dest in self._pending:
                return False
            self._pending.add(dest)
            self._ensure_thread()
        self._queue.put(ThumbnailJob(source_path=str(source_path), thumbnail_path=dest))
        logger.debug(f"Thumbnail queued: {source_path}")
        return True

    def _ensure_thread(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run, name="playr-thumbnails", daemon=True
        )
        self._thread.start()

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued job has been processed, or ``timeout`` expires.

        Returns True when the queue drained. No helper thread is left behind
        when the wait gives up.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self) -> None:
        """Drain the queue and stop the worker thread."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(None)  # poison pill
        thread.join()

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    break
                self._process(job)
            finally:
                if job is not None:
                    with self._lock:
                        self._pending.discard(job.thumbnail_path)
                self._queue.task_done()

    def _process(self, job: ThumbnailJob) -> None:
        dest = Path(job.thumbnail_path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            result = subprocess.run(
                _ffmpeg_args(self.ffmpeg_path or "ffmpeg", job.source_path, str(dest)),
                capture_output=True,
                timeout=_JOB_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Thumbnail failed for {job.source_path}: {e}")
            return

        if result.returncode == 0 and dest.exists():
            logger.debug(f"Thumbnail ready: {dest}")
            self._emit(job)
        else:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            logger.warning(
                f"ffmpeg exited {result.returncode} for {job.source_path}"
                + (f": {stderr}" if stderr else "")
            )
