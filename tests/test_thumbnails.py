"""Unit tests for the thumbnail cache and worker."""

import hashlib
import os
import stat
import sys
import threading

import pytest
from playr_catalog.thumbnails import ThumbnailWorker, thumbnail_path

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake ffmpeg is a shell script")


def make_fake_ffmpeg(tmp_path, exit_code=0, delay=0):
    """Shell script standing in for ffmpeg: writes its last argument and exits."""
    script = tmp_path / "fake-ffmpeg"
    body = "#!/bin/sh\n"
    if delay:
        body += f"sleep {delay}\n"
    if exit_code == 0:
        body += 'for last; do :; done\nprintf jpg > "$last"\n'
    else:
        body += f"echo 'decode error' >&2\nexit {exit_code}\n"
    script.write_text(body)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


class TestThumbnailPath:
    def test_sha1_of_relative_path(self, tmp_path):
        digest = hashlib.sha1("sub/clip.mp4".encode("utf-8")).hexdigest()
        assert thumbnail_path(tmp_path, "sub/clip.mp4") == (
            tmp_path / ".cache" / "thumbnails" / f"{digest}.jpg"
        )

    def test_distinct_paths(self, tmp_path):
        assert thumbnail_path(tmp_path, "a.mp4") != thumbnail_path(tmp_path, "b.mp4")


class TestThumbnailWorker:
    def test_generates_and_notifies(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))
        ready = []
        worker.subscribe(ready.append)
        dest = thumbnail_path(tmp_path, "a.mp4")

        assert worker.enqueue(tmp_path / "a.mp4", dest) is True
        worker.join(timeout=10)
        worker.stop()

        assert dest.read_bytes() == b"jpg"
        assert [job.thumbnail_path for job in ready] == [str(dest)]
        assert worker.pending() == 0

    def test_existing_thumbnail_not_queued(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))
        dest = tmp_path / "exists.jpg"
        dest.write_bytes(b"x")
        assert worker.enqueue(tmp_path / "a.mp4", dest) is False

    def test_duplicate_destination_deduplicated(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))
        dest = thumbnail_path(tmp_path, "a.mp4")
        ready = []
        worker.subscribe(ready.append)
        results = [worker.enqueue(tmp_path / "a.mp4", dest) for _ in range(3)]
        worker.join(timeout=10)
        worker.stop()
        assert results[0] is True
        assert len(ready) == 1

    def test_unavailable_without_ffmpeg(self, tmp_path, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        worker = ThumbnailWorker()
        assert not worker.available
        assert worker.enqueue(tmp_path / "a.mp4", tmp_path / "a.jpg") is False

    def test_failure_does_not_notify(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path, exit_code=1))
        ready = []
        worker.subscribe(ready.append)
        dest = thumbnail_path(tmp_path, "a.mp4")
        worker.enqueue(tmp_path / "a.mp4", dest)
        worker.join(timeout=10)
        worker.stop()
        assert ready == []
        assert not dest.exists()

    def test_unsubscribe(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))
        ready = []
        unsubscribe = worker.subscribe(ready.append)
        unsubscribe()
        worker.enqueue(tmp_path / "a.mp4", thumbnail_path(tmp_path, "a.mp4"))
        worker.join(timeout=10)
        worker.stop()
        assert ready == []

    def test_listener_error_is_contained(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))

        def broken(job):
            raise RuntimeError("listener bug")

        ready = []
        worker.subscribe(broken)
        worker.subscribe(ready.append)
        worker.enqueue(tmp_path / "a.mp4", thumbnail_path(tmp_path, "a.mp4"))
        worker.join(timeout=10)
        worker.stop()
        assert len(ready) == 1

    def test_stop_without_jobs(self, tmp_path):
        ThumbnailWorker(make_fake_ffmpeg(tmp_path)).stop()
        assert os.path.exists(tmp_path / "fake-ffmpeg")

    def test_join_reports_drained_queue(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path))
        worker.enqueue(tmp_path / "a.mp4", thumbnail_path(tmp_path, "a.mp4"))
        assert worker.join(timeout=10) is True
        worker.stop()

    def test_join_timeout_leaves_no_thread_behind(self, tmp_path):
        worker = ThumbnailWorker(make_fake_ffmpeg(tmp_path, delay=2))
        worker.enqueue(tmp_path / "a.mp4", thumbnail_path(tmp_path, "a.mp4"))
        threads_before = threading.active_count()

        assert worker.join(timeout=0.1) is False
        assert threading.active_count() == threads_before

        assert worker.join(timeout=10) is True
        worker.stop()
