"""Unit tests for catalog mutations and settings."""

import json

import pytest
from playr_catalog.database import open_catalog
from playr_catalog.models import PlaylistOptions, PlaylistRequest, ScannedFile
from playr_catalog.playlist_query import query_playlist
from playr_catalog import mutations, settings
from playr_catalog.reconciler import reconcile


def make_scanned(rel):
    return ScannedFile(relative_path=rel, name=rel, ext=".mp4", size=1, mtime=1, created_ms=1)


@pytest.fixture
def db(tmp_path):
    database = open_catalog(tmp_path)
    reconcile(database, [make_scanned("a.mp4"), make_scanned("b.mp4"), make_scanned("c.mp4")])
    yield database
    database.close()


@pytest.fixture
def ids(db):
    return {rel: mutations.get_file_by_path(db, rel).id for rel in ("a.mp4", "b.mp4", "c.mp4")}


class TestFileStats:
    @pytest.mark.parametrize("rating", [0, 1, 3, 5])
    def test_set_rating(self, db, ids, rating):
        mutations.set_rating(db, ids["a.mp4"], rating)
        assert mutations.get_file(db, ids["a.mp4"]).rating == rating

    def test_set_duration(self, db, ids):
        mutations.set_duration(db, ids["a.mp4"], 93_500)
        assert mutations.get_file(db, ids["a.mp4"]).duration_ms == 93_500

    def test_record_play_increments_by_one(self, db, ids):
        mutations.record_play(db, ids["b.mp4"])
        first = mutations.get_file(db, ids["b.mp4"])
        mutations.record_play(db, ids["b.mp4"])
        second = mutations.get_file(db, ids["b.mp4"])
        assert first.play_count == 1
        assert second.play_count == 2
        assert second.last_played >= first.last_played

    def test_unknown_id_is_a_no_op(self, db):
        mutations.set_rating(db, 9999, 4)
        mutations.set_duration(db, 9999, 10)
        mutations.record_play(db, 9999)
        assert mutations.get_file(db, 9999) is None


class TestTags:
    def test_toggle_on_then_off(self, db, ids):
        assert mutations.toggle_tag(db, ids["a.mp4"], "fun") is True
        assert mutations.get_file_tags(db, ids["a.mp4"]) == ["fun"]
        assert mutations.toggle_tag(db, ids["a.mp4"], "fun") is False
        assert mutations.get_file_tags(db, ids["a.mp4"]) == []

    def test_tag_survives_last_detach(self, db, ids):
        mutations.toggle_tag(db, ids["a.mp4"], "fun")
        mutations.toggle_tag(db, ids["a.mp4"], "fun")
        assert mutations.list_tags(db) == ["fun"]

    def test_association_unique(self, db, ids):
        mutations.toggle_tag(db, ids["a.mp4"], "fun")
        count = db.execute("SELECT COUNT(*) FROM file_tags").fetchone()[0]
        assert count == 1

    def test_toggle_unknown_file(self, db):
        assert mutations.toggle_tag(db, 9999, "ghost") is False
        assert "ghost" in mutations.list_tags(db)
        assert db.execute("SELECT COUNT(*) FROM file_tags").fetchone()[0] == 0

    def test_add_tag_idempotent(self, db):
        mutations.add_tag(db, "x")
        mutations.add_tag(db, "x")
        assert mutations.list_tags(db) == ["x"]

    def test_list_tags_case_insensitive_order(self, db):
        for name in ("beta", "Alpha", "alpha", "Gamma"):
            mutations.add_tag(db, name)
        assert mutations.list_tags(db) == ["Alpha", "alpha", "beta", "Gamma"]

    def test_list_tags_without_catalog(self):
        assert mutations.list_tags(None) == []


class TestSaveOrder:
    def test_dense_renumbering(self, db, ids):
        new_order = [ids["c.mp4"], ids["a.mp4"], ids["b.mp4"]]
        assert mutations.save_order(db, new_order) == 3
        assert mutations.list_collection_order(db) == [
            (ids["c.mp4"], 0), (ids["a.mp4"], 1), (ids["b.mp4"], 2),
        ]

    def test_unknown_ids_skipped(self, db, ids):
        assert mutations.save_order(db, [ids["b.mp4"], 9999]) == 1

    def test_empty_list(self, db):
        assert mutations.save_order(db, []) == 0

    def test_partial_list_moves_to_front(self, tmp_path):
        root = tmp_path / "five"
        root.mkdir()
        db = open_catalog(root)
        reconcile(db, [make_scanned(f"f{n}.mp4") for n in range(1, 6)])
        f = {n: mutations.get_file_by_path(db, f"f{n}.mp4").id for n in range(1, 6)}

        assert mutations.save_order(db, [f[5], f[4], f[3]]) == 3

        order = mutations.list_collection_order(db)
        assert [file_id for file_id, _ in order[:3]] == [f[5], f[4], f[3]]
        assert [index for _, index in order] == [0, 1, 2, 3, 4]

        response = query_playlist(db, PlaylistRequest())
        assert [item.path for item in response.items] == [
            "f5.mp4", "f4.mp4", "f3.mp4", "f1.mp4", "f2.mp4",
        ]
        db.close()

    def test_unlisted_members_keep_relative_order(self, db, ids):
        mutations.save_order(db, [ids["c.mp4"], ids["b.mp4"], ids["a.mp4"]])
        mutations.save_order(db, [ids["b.mp4"]])
        assert mutations.list_collection_order(db) == [
            (ids["b.mp4"], 0), (ids["c.mp4"], 1), (ids["a.mp4"], 2),
        ]

    def test_repeated_ids_counted_once(self, db, ids):
        assert mutations.save_order(db, [ids["b.mp4"], ids["b.mp4"]]) == 1
        assert [index for _, index in mutations.list_collection_order(db)] == [0, 1, 2]


class TestSettings:
    def test_get_missing_setting(self, db):
        assert mutations.get_setting(db, "nope") is None

    def test_upsert(self, db):
        mutations.set_setting(db, "k", "1")
        mutations.set_setting(db, "k", "2")
        assert mutations.get_setting(db, "k") == "2"
        assert db.execute("SELECT COUNT(*) FROM settings WHERE name = 'k'").fetchone()[0] == 1

    def test_no_catalog_reads_none(self):
        assert mutations.get_setting(None, "k") is None


class TestPlaylistOptions:
    def test_defaults_on_fresh_catalog(self, db):
        options = settings.read_playlist_options(db)
        assert options == PlaylistOptions()

    def test_round_trip(self, db):
        saved = settings.save_playlist_options(
            db, PlaylistOptions(sort="random", rating_min=4, tags=["a", "b"])
        )
        assert settings.read_playlist_options(db) == saved
        assert json.loads(mutations.get_setting(db, "ui.tags")) == ["a", "b"]

    def test_junk_values_fall_back(self, db):
        mutations.set_setting(db, "ui.sort", "sideways")
        mutations.set_setting(db, "ui.rating_min", "eleven")
        mutations.set_setting(db, "ui.tags", "{not json")
        assert settings.read_playlist_options(db) == PlaylistOptions()

    def test_rating_clamped(self, db):
        mutations.set_setting(db, "ui.rating_min", "9")
        assert settings.read_playlist_options(db).rating_min == 5

    def test_tags_cleaned(self, db):
        mutations.set_setting(db, "ui.tags", json.dumps(["a", "", 3, "a", "b"]))
        assert settings.read_playlist_options(db).tags == ["a", "b"]


class TestCurrentMediaPath:
    @pytest.mark.parametrize("raw, expected", [
        ("sub/clip.mp4", "sub/clip.mp4"),
        ("sub\\clip.mp4", "sub/clip.mp4"),
        ("./sub/../clip.mp4", "clip.mp4"),
        ("/abs/clip.mp4", None),
        ("C:/clip.mp4", None),
        ("../outside.mp4", None),
        ("", None),
        (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert settings.normalize_relative_media_path(raw) == expected

    def test_save_and_read(self, db):
        assert settings.save_current_media_path(db, "sub\\clip.mp4") == "sub/clip.mp4"
        assert settings.read_current_media_path(db) == "sub/clip.mp4"
