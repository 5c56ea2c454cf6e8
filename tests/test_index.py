"""Tests for the in-memory cache index."""

import pytest

from catalogcache.index import CacheIndex
from catalogcache.models import ItemState
from catalogcache.utils import EPOCH, from_epoch_millis


class TestLookups:
    """Tests for lookup_by_id and lookup_by_reference_id."""

    def test_lookup_by_id(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "one"))

        entry = index.lookup_by_id(1)

        assert entry.id == 1
        assert entry.state == ItemState.ACTIVE
        assert entry.last_modified == from_epoch_millis(100)
        assert entry.reference_id == "one"

    def test_lookup_missing_id(self):
        assert CacheIndex().lookup_by_id(42) is None

    def test_active_only_hides_inactive(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, state=ItemState.INACTIVE))

        assert index.lookup_by_id(1, active_only=True) is None
        assert index.lookup_by_id(1).state == ItemState.INACTIVE

    def test_lookup_by_reference_id(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(7, 100, "seven"))

        assert index.lookup_by_reference_id("seven").id == 7
        assert index.lookup_by_reference_id("eight") is None
        assert index.lookup_by_reference_id(None) is None

    def test_lookup_by_reference_id_active_only(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(7, 100, "seven", state=ItemState.DELETED))

        assert index.lookup_by_reference_id("seven", active_only=True) is None
        assert index.lookup_by_reference_id("seven").state == ItemState.DELETED


class TestUpsert:
    """Tests for upsert."""

    def test_missing_timestamp_stored_as_epoch(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, None))
        assert index.last_modified_by_id[1] == EPOCH

    def test_overwrite_replaces_reference_id(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "old"))
        index.upsert(make_record(1, 200, "new"))

        assert dict(index.id_by_reference_id) == {"new": 1}
        assert index.lookup_by_id(1).reference_id == "new"

    def test_overwrite_drops_reference_id(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "old"))
        index.upsert(make_record(1, 200))

        assert dict(index.id_by_reference_id) == {}
        assert index.lookup_by_id(1).reference_id is None

    def test_reference_id_moves_to_new_owner(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "shared"))
        index.upsert(make_record(2, 200, "shared"))

        assert index.id_by_reference_id["shared"] == 2
        assert index.lookup_by_id(1).reference_id is None
        assert index.lookup_by_id(2).reference_id == "shared"

    def test_update_many(self, make_record):
        index = CacheIndex()
        index.update([make_record(1), make_record(2), make_record(3)])
        assert sorted(index.ids()) == [1, 2, 3]


class TestRemove:
    """Tests for remove."""

    def test_remove_clears_all_maps(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "one"))
        index.upsert(make_record(2, 200, "two"))

        index.remove(1)

        assert 1 not in index
        assert dict(index.id_by_reference_id) == {"two": 2}
        assert 1 not in index.last_modified_by_id
        assert len(index) == 1

    def test_remove_absent_is_silent(self):
        index = CacheIndex()
        index.remove(99)
        assert len(index) == 0


class TestHighWaterMark:
    """Tests for high_water_mark and repair detection."""

    def test_empty_index_is_epoch(self):
        assert CacheIndex().high_water_mark() == EPOCH

    def test_maximum_timestamp(self, make_record):
        index = CacheIndex()
        index.update([make_record(1, 300), make_record(2, 900), make_record(3, 500)])
        assert index.high_water_mark() == from_epoch_millis(900)

    def test_needs_repair_when_timestamps_missing(self):
        index = CacheIndex.from_snapshot(
            {1: ItemState.ACTIVE, 2: ItemState.ACTIVE},
            {},
            {1: from_epoch_millis(10)},
        )
        assert index.needs_repair()
        assert index.missing_timestamps() == [2]

        index.set_last_modified(2, from_epoch_millis(20))

        assert not index.needs_repair()
        assert index.high_water_mark() == from_epoch_millis(20)

    def test_set_last_modified_unknown_id(self):
        with pytest.raises(KeyError):
            CacheIndex().set_last_modified(1, EPOCH)


class TestFromSnapshot:
    """Tests for building an index from snapshot sections."""

    def test_dangling_reference_ids_dropped(self):
        index = CacheIndex.from_snapshot(
            {1: ItemState.ACTIVE},
            {"one": 1, "ghost": 2},
            {1: EPOCH},
        )
        assert dict(index.id_by_reference_id) == {"one": 1}

    def test_second_reference_id_for_same_id_wins(self):
        index = CacheIndex.from_snapshot(
            {1: ItemState.ACTIVE},
            {"a": 1, "b": 1},
            {1: EPOCH},
        )
        assert dict(index.id_by_reference_id) == {"b": 1}
        assert index.lookup_by_id(1).reference_id == "b"

    def test_timestamps_of_unknown_ids_dropped(self):
        index = CacheIndex.from_snapshot(
            {1: ItemState.ACTIVE}, {}, {1: EPOCH, 2: EPOCH}
        )
        assert dict(index.last_modified_by_id) == {1: EPOCH}


class TestReadOnlyViews:
    """Accessors must not let callers bypass the index."""

    def test_views_are_read_only(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "one"))

        with pytest.raises(TypeError):
            index.state_by_id[2] = ItemState.ACTIVE
        with pytest.raises(TypeError):
            index.id_by_reference_id["two"] = 2
        with pytest.raises(TypeError):
            index.last_modified_by_id[2] = EPOCH

    def test_ids_is_a_copy(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1))
        index.ids().append(5)
        assert index.ids() == [1]

    def test_clear(self, make_record):
        index = CacheIndex()
        index.upsert(make_record(1, 100, "one"))
        index.clear()
        assert len(index) == 0
        assert index.lookup_by_reference_id("one") is None
