"""Tests for adding, removing and listing sidebar items."""

from __future__ import annotations

import os

import pytest

from bookmark_codec import BookmarkCodec, canonical_url
from favorite_item_store import (
    BOOKMARK_KEY,
    CUSTOM_PROPERTIES_KEY,
    DONT_SHOW_ON_REAPPEARANCE_KEY,
    FORCE_TEMPLATE_ICONS_KEY,
    ITEM_IS_HIDDEN_KEY,
    ITEMS_KEY,
    PROPERTIES_KEY,
    UUID_KEY,
    VISIBILITY_KEY,
    FavoriteItemStore,
    bootstrap_graph,
)
from keyed_archive_codec import ValueGraph
from sidebar_errors import CorruptArchive, DuplicateItem, InvalidPath


def url_of(path: str) -> str:
    return canonical_url(path)


class TestAdd:
    def test_add_then_list(self, store, folders):
        url = store.add(folders["Projects"])
        assert url == "file://" + folders["Projects"] + "/"
        assert list(store.list()) == [url]

    def test_duplicate_is_rejected(self, store, folders):
        store.add(folders["Projects"])
        with pytest.raises(DuplicateItem):
            store.add(folders["Projects"])
        assert list(store.list()) == [url_of(folders["Projects"])]

    def test_duplicate_with_different_spelling(self, store, folders):
        store.add(folders["Projects"])
        with pytest.raises(DuplicateItem):
            store.add(folders["Projects"] + "/../Projects/")

    def test_duplicate_leaves_graph_untouched(self, store, folders):
        store.add(folders["Projects"])
        before = store.to_graph()
        with pytest.raises(DuplicateItem):
            store.add(folders["Projects"])
        assert store.to_graph() == before

    def test_order_is_preserved(self, store, folders):
        store.add(folders["Projects"])
        store.add(folders["Documents"])
        assert list(store.list()) == [url_of(folders["Projects"]), url_of(folders["Documents"])]

    def test_new_item_layout(self, store, folders):
        store.add(folders["Projects"])
        item = store.to_graph()[ITEMS_KEY][0]

        assert item[VISIBILITY_KEY] == 0
        assert isinstance(item[BOOKMARK_KEY], bytes)
        assert len(item[UUID_KEY]) == 36
        assert item[UUID_KEY] == item[UUID_KEY].upper()
        assert item[CUSTOM_PROPERTIES_KEY] == {
            ITEM_IS_HIDDEN_KEY: 1,
            DONT_SHOW_ON_REAPPEARANCE_KEY: 0,
        }

    def test_uuids_are_unique(self, store, folders):
        store.add(folders["Projects"])
        store.add(folders["Documents"])
        first, second = store.to_graph()[ITEMS_KEY]
        assert first[UUID_KEY] != second[UUID_KEY]

    def test_desktop_has_no_custom_properties(self, store, folders):
        store.add(folders["Desktop"])
        item = store.to_graph()[ITEMS_KEY][0]
        assert CUSTOM_PROPERTIES_KEY not in item

    def test_missing_path_can_be_added(self, store):
        url = store.add("/nonexistent-sbedit-volume/alice/Projects")
        assert url == "file:///nonexistent-sbedit-volume/alice/Projects"
        assert list(store.list()) == [url]

    def test_invalid_path(self, store):
        with pytest.raises(InvalidPath):
            store.add("")
        assert list(store.list()) == []

    def test_missing_items_list(self):
        store = FavoriteItemStore(ValueGraph({PROPERTIES_KEY: {}}))
        with pytest.raises(CorruptArchive):
            store.add("/tmp")


class TestAddMany:
    def test_partial_success(self, store, folders):
        store.add(folders["Documents"])
        result = store.add_many([folders["Projects"], folders["Documents"], ""])

        assert result.succeeded
        assert result.added == [url_of(folders["Projects"])]
        assert [path for path, _ in result.failures] == [folders["Documents"], ""]
        assert isinstance(result.failures[0][1], DuplicateItem)
        assert isinstance(result.failures[1][1], InvalidPath)

    def test_all_failures(self, store, folders):
        store.add(folders["Projects"])
        result = store.add_many([folders["Projects"], "bad\0path"])
        assert not result.succeeded
        assert len(result.failures) == 2

    def test_undecodable_path_does_not_stop_batch(self, store, folders, tmp_path):
        undecodable = str(tmp_path) + "/caf\udce9"
        result = store.add_many([undecodable, folders["Projects"]])

        assert result.added == [url_of(folders["Projects"])]
        assert [path for path, _ in result.failures] == [undecodable]
        assert isinstance(result.failures[0][1], InvalidPath)
        assert list(store.list()) == [url_of(folders["Projects"])]

    def test_duplicates_within_batch(self, store, folders):
        result = store.add_many([folders["Projects"], folders["Projects"]])
        assert len(result.added) == 1
        assert len(result.failures) == 1


class TestRemove:
    def test_remove_then_list_is_empty(self, store, folders):
        store.add(folders["Projects"])
        assert store.remove(folders["Projects"]) is True
        assert list(store.list()) == []

    def test_remove_from_empty_is_noop(self, store, folders):
        before = store.to_graph()
        assert store.remove(folders["Projects"]) is False
        assert store.to_graph() == before

    def test_remove_keeps_other_items(self, store, folders):
        store.add(folders["Projects"])
        store.add(folders["Documents"])
        store.remove(folders["Projects"])
        assert list(store.list()) == [url_of(folders["Documents"])]

    def test_remove_stops_at_first_match(self, folders):
        bookmark = BookmarkCodec().from_path(folders["Projects"])
        graph = ValueGraph({
            ITEMS_KEY: [
                {UUID_KEY: "FIRST", BOOKMARK_KEY: bookmark},
                {UUID_KEY: "SECOND", BOOKMARK_KEY: bookmark},
            ],
        })
        store = FavoriteItemStore(graph)
        store.remove(folders["Projects"])
        assert [item[UUID_KEY] for item in store.to_graph()[ITEMS_KEY]] == ["SECOND"]

    def test_invalid_path(self, store):
        with pytest.raises(InvalidPath):
            store.remove("")


class TestRemoveAll:
    def test_clears_items_only(self, folders):
        graph = bootstrap_graph()
        graph["com.example.extra"] = [1, 2, 3]
        store = FavoriteItemStore(graph)
        store.add(folders["Projects"])
        store.add(folders["Documents"])

        assert store.remove_all() == 2
        result = store.to_graph()
        assert list(store.list()) == []
        assert result[PROPERTIES_KEY] == {FORCE_TEMPLATE_ICONS_KEY: True}
        assert result["com.example.extra"] == [1, 2, 3]

    def test_creates_items_list_when_missing(self):
        store = FavoriteItemStore(ValueGraph({}))
        assert store.remove_all() == 0
        assert store.to_graph()[ITEMS_KEY] == []


class TestListing:
    def test_unresolvable_items_are_skipped(self, folders):
        good = BookmarkCodec().from_path(folders["Projects"])
        graph = ValueGraph({
            ITEMS_KEY: [
                {UUID_KEY: "BROKEN", BOOKMARK_KEY: b"not a bookmark"},
                {UUID_KEY: "NOBOOKMARK"},
                "not even a dictionary",
                {UUID_KEY: "GOOD", BOOKMARK_KEY: good},
            ],
        })
        store = FavoriteItemStore(graph)
        assert list(store.list()) == [url_of(folders["Projects"])]

        entries = list(store.entries())
        assert [e.resolved for e in entries] == [False, False, False, True]
        assert entries[0].uuid == "BROKEN"
        assert entries[3].path == folders["Projects"]

    def test_unresolvable_items_do_not_block_add(self, folders):
        graph = ValueGraph({ITEMS_KEY: [{BOOKMARK_KEY: b"junk"}]})
        store = FavoriteItemStore(graph)
        store.add(folders["Projects"])
        assert len(store.to_graph()[ITEMS_KEY]) == 2

    def test_list_is_restartable(self, store, folders):
        store.add(folders["Projects"])
        urls = store.list()
        assert list(urls) == [url_of(folders["Projects"])]
        assert list(store.list()) == [url_of(folders["Projects"])]

    def test_stale_entry(self, store, tmp_path):
        folder = tmp_path / "Old"
        folder.mkdir()
        store.add(str(folder))
        os.rename(folder, tmp_path / "New")

        entry = next(store.entries())
        assert entry.stale
        assert entry.url == url_of(str(tmp_path / "New"))


class TestOwnership:
    def test_store_does_not_touch_input_graph(self, folders):
        graph = bootstrap_graph()
        store = FavoriteItemStore(graph)
        store.add(folders["Projects"])
        assert graph[ITEMS_KEY] == []

    def test_to_graph_returns_copy(self, store, folders):
        snapshot = store.to_graph()
        store.add(folders["Projects"])
        assert snapshot[ITEMS_KEY] == []

    def test_properties_are_a_copy(self, store):
        store.properties[FORCE_TEMPLATE_ICONS_KEY] = False
        assert store.properties == {FORCE_TEMPLATE_ICONS_KEY: True}
