"""Tests for the SQLite log store."""

import threading

import pytest

from rangesync.feedback import Descriptor, Event
from rangesync.log import LogStore
from rangesync.ranges import SortedRangeSet


def make_events(target_id: str, store_id: int, ids) -> list[Event]:
    return [Event(target_id, store_id, i, 1000 + i, 1, {"n": str(i)}) for i in ids]


@pytest.fixture
def store():
    """Create an in-memory log store."""
    s = LogStore(":memory:", "auditlog")
    s.connect()
    yield s
    s.close()


class TestLogStoreSchema:
    """Tests for connection lifecycle."""

    def test_connect_creates_database_file(self, tmp_path):
        db_path = tmp_path / "logs" / "auditlog.db"
        s = LogStore(db_path)
        s.connect()
        assert db_path.exists()
        s.close()

    def test_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "auditlog.db"
        s = LogStore(db_path)
        s.connect()
        s.put(make_events("t", 1, [1, 2]))
        s.close()

        s = LogStore(db_path)
        s.connect()
        assert s.get_descriptor("t", 1).range_set.to_representation() == "1-2"
        s.close()

    def test_lazy_connect(self):
        s = LogStore(":memory:")
        assert s.get_descriptors() == []
        s.close()


class TestLogStorePut:
    """Tests for storing events."""

    def test_put_and_get(self, store):
        assert store.put(make_events("t", 1, [1, 2, 3])) == 3
        events = store.get(store.get_descriptor("t", 1))
        assert [e.id for e in events] == [1, 2, 3]
        assert events[0].properties == {"n": "1"}

    def test_put_ignores_duplicates(self, store):
        store.put(make_events("t", 1, [1, 2]))
        assert store.put(make_events("t", 1, [2, 3])) == 1
        assert store.get_descriptor("t", 1).range_set.to_representation() == "1-3"

    def test_put_groups_by_log(self, store):
        store.put(make_events("a", 1, [1, 2]) + make_events("b", 2, [5]) + make_events("a", 2, [7]))
        keys = [d.key for d in store.get_descriptors()]
        assert keys == [("a", 1), ("a", 2), ("b", 2)]

    def test_descriptor_with_gaps(self, store):
        store.put(make_events("t", 1, [1, 2, 3, 7, 9, 10]))
        assert store.get_descriptor("t", 1).range_set.to_representation() == "1-3,7,9-10"

    def test_unknown_log_has_empty_descriptor(self, store):
        d = store.get_descriptor("nobody", 1)
        assert not d.range_set

    def test_get_descriptors_for_target(self, store):
        store.put(make_events("a", 1, [1]) + make_events("b", 1, [1]))
        assert [d.target_id for d in store.get_descriptors("b")] == ["b"]


class TestLogStoreGet:
    """Tests for range-filtered reads."""

    def test_get_restricted_to_range(self, store):
        store.put(make_events("t", 1, range(1, 11)))
        wanted = Descriptor("t", 1, SortedRangeSet.parse("2,5-6,10"))
        assert [e.id for e in store.get(wanted)] == [2, 5, 6, 10]

    def test_get_full_set(self, store):
        store.put(make_events("t", 1, [3, 4]))
        events = store.get(Descriptor("t", 1, SortedRangeSet.full()))
        assert [e.id for e in events] == [3, 4]

    def test_get_other_log_untouched(self, store):
        store.put(make_events("t", 1, [1]) + make_events("t", 2, [1]))
        events = store.get(Descriptor("t", 2, SortedRangeSet.full()))
        assert [(e.store_id, e.id) for e in events] == [(2, 1)]


class TestLowestIDs:
    """Tests for watermarks."""

    def test_default_is_zero(self, store):
        assert store.get_lowest_id("t", 1) == 0
        assert store.get_lowest_ids() == []

    def test_set_lowest_id_purges(self, store):
        store.put(make_events("t", 1, range(1, 11)))
        assert store.set_lowest_id("t", 1, 6)
        assert store.get_descriptor("t", 1).range_set.to_representation() == "6-10"
        assert store.get_lowest_id("t", 1) == 6

    def test_lowest_id_only_rises(self, store):
        store.set_lowest_id("t", 1, 10)
        assert not store.set_lowest_id("t", 1, 5)
        assert store.get_lowest_id("t", 1) == 10

    def test_put_below_lowest_id_skipped(self, store):
        store.set_lowest_id("t", 1, 5)
        assert store.put(make_events("t", 1, [3, 4, 5, 6])) == 2
        assert store.get_descriptor("t", 1).range_set.to_representation() == "5-6"

    def test_watermark_only_log_is_known(self, store):
        store.set_lowest_id("t", 9, 3)
        descriptors = store.get_descriptors()
        assert [d.key for d in descriptors] == [("t", 9)]
        assert not descriptors[0].range_set
        assert [lid.lowest_id for lid in store.get_lowest_ids()] == [3]


class TestLogEvent:
    """Tests for recording local events."""

    def test_ids_start_at_one(self, store):
        event = store.log_event("t", 1, 1001, {"msg": "started"})
        assert event.id == 1
        assert store.get(Descriptor("t", 1, SortedRangeSet.full())) == [event]

    def test_ids_increase(self, store):
        store.put(make_events("t", 1, [1, 2, 3]))
        assert store.log_event("t", 1, 1).id == 4

    def test_continues_after_trimmed_log(self, store):
        store.set_lowest_id("t", 1, 20)
        assert store.log_event("t", 1, 1).id == 20

    def test_explicit_timestamp(self, store):
        assert store.log_event("t", 1, 1, timestamp=42).timestamp == 42

    def test_concurrent_log_event_unique_ids(self, store):
        ids = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                event = store.log_event("t", 1, 1)
                with lock:
                    ids.append(event.id)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(ids) == list(range(1, 81))
        assert store.get_descriptor("t", 1).range_set.to_representation() == "1-80"


class TestMaxEvents:
    """Tests for trimming to the newest events."""

    def test_put_trims_to_max_events(self):
        s = LogStore(":memory:", max_events=3)
        s.connect()
        s.put(make_events("t", 1, range(1, 11)))
        assert s.get_descriptor("t", 1).range_set.to_representation() == "8-10"
        assert s.get_lowest_id("t", 1) == 8
        s.close()

    def test_clean_trims_all_logs(self, store):
        store.put(make_events("a", 1, range(1, 6)) + make_events("b", 1, range(1, 3)))
        store.max_events = 2
        assert store.clean() == 1
        assert store.get_descriptor("a", 1).range_set.to_representation() == "4-5"
        assert store.get_descriptor("b", 1).range_set.to_representation() == "1-2"

    def test_clean_unlimited_is_noop(self, store):
        store.put(make_events("t", 1, range(1, 6)))
        assert store.clean() == 0


class TestStats:
    """Tests for get_stats."""

    def test_get_stats(self, store):
        store.put(make_events("a", 1, [1, 2]) + make_events("b", 1, [1]))
        store.set_lowest_id("a", 1, 2)
        stats = store.get_stats()
        assert stats["name"] == "auditlog"
        assert stats["logs"] == 2
        assert stats["total_events"] == 2
        assert stats["watermarks"] == 1
