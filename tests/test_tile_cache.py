"""Tests for the tile cache store — fetch lifecycle, invalidation, optimistic updates."""

import pytest

from hexmap.engine.tile_cache import TileCacheStore
from hexmap.loaders.cache_config_loader import CacheConfig
from hexmap.models.coord import Coord
from hexmap.models.tile import CacheStatus, TileRecord
from hexmap.util.errors import ErrorKind, NotFound
from hexmap.util.events import EventBus, TileFetched, TileFetchFailed, TilesInvalidated


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


ROOT = Coord(1, 1)
A = Coord(1, 1, (0,))
A0 = Coord(1, 1, (0, 0))
B = Coord(1, 1, (3,))


def _record(coord, owner="1", has_children=False, content=None):
    return TileRecord(coord=coord, owner_id=owner, content=content, has_children=has_children)


def _store(max_age=60.0):
    clock = FakeClock()
    bus = EventBus()
    store = TileCacheStore(CacheConfig(max_age_seconds=max_age), bus, clock=clock)
    return store, clock, bus


def _ready(store, *coords):
    for c in coords:
        store.begin_fetch(c)
        store.resolve_fetch(c, _record(c, has_children=True))


class TestGet:
    def test_unknown_coord_is_idle(self):
        store, _, _ = _store()
        entry = store.get(A)
        assert entry.status is CacheStatus.IDLE
        assert entry.record is None

    def test_get_does_not_register(self):
        store, _, _ = _store()
        store.get(A)
        assert len(store) == 0

    def test_touch_registers_idle(self):
        store, _, _ = _store()
        store.touch(A)
        assert A in store
        assert store.get(A).status is CacheStatus.IDLE


class TestFetchLifecycle:
    def test_begin_fetch_goes_loading(self):
        store, _, _ = _store()
        assert store.begin_fetch(ROOT) is True
        assert store.get(ROOT).status is CacheStatus.LOADING

    def test_second_begin_fetch_is_noop(self):
        store, _, _ = _store()
        assert store.begin_fetch(ROOT) is True
        assert store.begin_fetch(ROOT) is False
        assert store.get(ROOT).status is CacheStatus.LOADING

    def test_resolve_success_sets_ready_and_stamps(self):
        store, clock, _ = _store()
        store.begin_fetch(ROOT)
        clock.now = 1234.5
        assert store.resolve_fetch(ROOT, _record(ROOT)) is True
        entry = store.get(ROOT)
        assert entry.status is CacheStatus.READY
        assert entry.record.owner_id == "1"
        assert entry.record.fetched_at == 1234.5

    def test_resolve_failure_sets_error(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        store.resolve_fetch(ROOT, NotFound("gone"))
        entry = store.get(ROOT)
        assert entry.status is CacheStatus.ERROR
        assert entry.error is ErrorKind.NOT_FOUND

    def test_resolve_with_error_kind(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        store.resolve_fetch(ROOT, ErrorKind.TRANSPORT_ERROR)
        assert store.get(ROOT).error is ErrorKind.TRANSPORT_ERROR

    def test_resolve_without_loading_is_noop(self):
        store, _, _ = _store()
        assert store.resolve_fetch(ROOT, _record(ROOT)) is False
        assert store.get(ROOT).status is CacheStatus.IDLE

    def test_late_resolve_after_invalidate_is_noop(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        store.invalidate(ROOT)
        assert store.resolve_fetch(ROOT, _record(ROOT)) is False
        assert store.get(ROOT).status is CacheStatus.IDLE

    def test_outdated_token_is_ignored(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        old = store.fetch_token(ROOT)
        store.invalidate(ROOT)
        store.begin_fetch(ROOT)
        assert store.resolve_fetch(ROOT, _record(ROOT), token=old) is False
        assert store.resolve_fetch(ROOT, _record(ROOT), token=store.fetch_token(ROOT)) is True

    def test_record_for_other_coord_rejected(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        with pytest.raises(ValueError):
            store.resolve_fetch(ROOT, _record(A))

    def test_fresh_ready_is_not_refetched(self):
        store, clock, _ = _store(max_age=60)
        _ready(store, ROOT)
        clock.now += 30
        assert store.begin_fetch(ROOT) is False

    def test_stale_ready_is_refetched_keeping_record(self):
        store, clock, _ = _store(max_age=60)
        _ready(store, ROOT)
        clock.now += 61
        assert store.begin_fetch(ROOT) is True
        entry = store.get(ROOT)
        assert entry.status is CacheStatus.LOADING
        assert entry.record is not None

    def test_error_can_be_refetched(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        store.resolve_fetch(ROOT, ErrorKind.TRANSPORT_ERROR)
        assert store.begin_fetch(ROOT) is True

    def test_failed_refetch_keeps_previous_record(self):
        store, clock, _ = _store(max_age=1)
        _ready(store, ROOT)
        clock.now += 5
        store.begin_fetch(ROOT)
        store.resolve_fetch(ROOT, ErrorKind.TRANSPORT_ERROR)
        entry = store.get(ROOT)
        assert entry.status is CacheStatus.ERROR
        assert entry.record is not None

    def test_resolution_order_commutes(self):
        first, _, _ = _store()
        second, _, _ = _store()
        for store in (first, second):
            store.begin_fetch(A)
            store.begin_fetch(B)
        first.resolve_fetch(A, _record(A))
        first.resolve_fetch(B, ErrorKind.NOT_FOUND)
        second.resolve_fetch(B, ErrorKind.NOT_FOUND)
        second.resolve_fetch(A, _record(A))
        assert first.get(A) == second.get(A)
        assert first.get(B) == second.get(B)

    def test_cancel_fetch(self):
        store, _, _ = _store()
        store.begin_fetch(ROOT)
        assert store.cancel_fetch(ROOT) is True
        assert store.get(ROOT).status is CacheStatus.IDLE
        assert store.resolve_fetch(ROOT, _record(ROOT)) is False

    def test_events_emitted(self):
        store, _, bus = _store()
        seen = []
        bus.on(TileFetched, seen.append)
        bus.on(TileFetchFailed, seen.append)
        store.begin_fetch(A)
        store.begin_fetch(B)
        store.resolve_fetch(A, _record(A))
        store.resolve_fetch(B, ErrorKind.NOT_FOUND)
        assert seen == [TileFetched(key="1-1-0"),
                        TileFetchFailed(key="1-1-3", error=ErrorKind.NOT_FOUND)]


class TestInvalidate:
    def test_invalidate_single(self):
        store, _, _ = _store()
        _ready(store, ROOT, A, A0)
        assert store.invalidate(A) == ["1-1-0"]
        assert store.get(A).status is CacheStatus.IDLE
        assert store.get(A0).status is CacheStatus.READY

    def test_invalidate_cascade(self):
        store, _, _ = _store()
        _ready(store, ROOT, A, A0, B)
        reset = store.invalidate(A, cascade=True)
        assert reset == ["1-1-0", "1-1-00"]
        assert store.get(A0).status is CacheStatus.IDLE
        assert store.get(ROOT).status is CacheStatus.READY
        assert store.get(B).status is CacheStatus.READY

    def test_invalidate_keeps_entries(self):
        store, _, _ = _store()
        _ready(store, A)
        store.invalidate(A)
        assert A in store

    def test_invalidate_unknown_is_noop(self):
        store, _, bus = _store()
        seen = []
        bus.on(TilesInvalidated, seen.append)
        assert store.invalidate(A, cascade=True) == []
        assert seen == []

    def test_invalidate_emits_keys(self):
        store, _, bus = _store()
        _ready(store, ROOT, A)
        seen = []
        bus.on(TilesInvalidated, seen.append)
        store.invalidate(ROOT, cascade=True)
        assert seen == [TilesInvalidated(keys=("1-1", "1-1-0"))]

    def test_invalidate_does_not_cross_groups(self):
        store, _, _ = _store()
        other = Coord(1, 12)
        _ready(store, ROOT, other)
        store.invalidate(ROOT, cascade=True)
        assert store.get(other).status is CacheStatus.READY

    def test_clear_drops_everything(self):
        store, _, _ = _store()
        _ready(store, ROOT, A)
        store.upsert_optimistic(A, content="x")
        store.clear()
        assert len(store) == 0
        assert store.pending_changes() == []


class TestOptimistic:
    def test_merge_into_ready(self):
        store, _, _ = _store()
        _ready(store, A)
        cid = store.upsert_optimistic(A, content={"name": "new"})
        entry = store.get(A)
        assert entry.optimistic
        assert entry.change_id == cid
        assert entry.record.content == {"name": "new"}
        assert entry.status is CacheStatus.READY

    def test_merge_into_non_ready_fails(self):
        store, _, _ = _store()
        with pytest.raises(ValueError):
            store.upsert_optimistic(A, content="x")

    def test_full_record_on_empty_slot(self):
        store, _, _ = _store()
        store.upsert_optimistic(B, _record(A, content="moved"))
        entry = store.get(B)
        assert entry.record.coord == B
        assert entry.record.content == "moved"

    def test_rollback_restores_exact_entries(self):
        store, _, _ = _store()
        _ready(store, A)
        before = store.get(A)
        cid = store.upsert_optimistic(A, content="x")
        cid = store.upsert_optimistic(B, _record(B), change_id=cid)
        assert store.rollback(cid) == ["1-1-0", "1-1-3"]
        assert store.get(A) == before
        assert B not in store

    def test_commit_clears_tag(self):
        store, _, _ = _store()
        _ready(store, A)
        cid = store.upsert_optimistic(A, content="x")
        assert store.commit(cid) == ["1-1-0"]
        entry = store.get(A)
        assert not entry.optimistic
        assert entry.record.content == "x"
        assert store.pending_changes() == []

    def test_invalidate_supersedes_optimistic(self):
        store, _, _ = _store()
        _ready(store, A)
        cid = store.upsert_optimistic(A, content="x")
        store.invalidate(A)
        assert store.rollback(cid) == []
        assert store.get(A).status is CacheStatus.IDLE

    def test_pending_change_blocks_refetch(self):
        store, clock, _ = _store(max_age=1)
        _ready(store, A)
        cid = store.upsert_optimistic(A, content="x")
        clock.now += 100
        assert store.begin_fetch(A) is False
        store.commit(cid)
        assert store.begin_fetch(A) is True

    def test_remove_optimistic_empties_slot(self):
        store, _, _ = _store()
        _ready(store, A)
        cid = store.remove_optimistic(A)
        entry = store.get(A)
        assert entry.record is None
        assert entry.optimistic
        store.rollback(cid)
        assert store.get(A).is_ready

    def test_pending_changes_listed(self):
        store, _, _ = _store()
        _ready(store, A, B)
        first = store.upsert_optimistic(A, content=1)
        second = store.upsert_optimistic(B, content=2)
        assert [c.change_id for c in store.pending_changes()] == [first, second]
        store.rollback_all()
        assert store.pending_changes() == []
        assert not store.get(A).optimistic

    def test_rollback_after_fetch_ended_does_not_restore_loading(self):
        store, _, _ = _store()
        store.begin_fetch(B)
        token = store.fetch_token(B)
        cid = store.upsert_optimistic(B, _record(A))
        assert store.resolve_fetch(B, ErrorKind.NOT_FOUND, token) is False
        store.rollback(cid)
        assert store.get(B).status is CacheStatus.IDLE
        assert store.begin_fetch(B) is True

    def test_rollback_after_fetch_ended_keeps_stale_record(self):
        store, clock, _ = _store(max_age=1)
        _ready(store, A)
        clock.now += 100
        store.begin_fetch(A)
        cid = store.upsert_optimistic(A, _record(A, content="x"))
        store.resolve_fetch(A, _record(A), store.fetch_token(A))
        store.rollback(cid)
        entry = store.get(A)
        assert entry.status is CacheStatus.READY
        assert entry.record.content is None
        assert store.begin_fetch(A) is True

    def test_rollback_while_fetch_outstanding_keeps_loading(self):
        store, _, _ = _store()
        store.begin_fetch(B)
        token = store.fetch_token(B)
        cid = store.upsert_optimistic(B, _record(A))
        store.rollback(cid)
        assert store.get(B).status is CacheStatus.LOADING
        assert store.resolve_fetch(B, _record(B), token) is True
        assert store.get(B).is_ready

    def test_cancelled_fetch_is_not_restored_as_loading(self):
        store, _, _ = _store()
        store.begin_fetch(B)
        cid = store.remove_optimistic(B)
        assert store.cancel_fetch(B) is False
        store.rollback(cid)
        assert store.get(B).status is CacheStatus.IDLE


class TestSnapshotsAndQueries:
    def test_snapshot_and_restore_subtree(self):
        store, _, _ = _store()
        _ready(store, A, A0)
        snap = store.snapshot([A, B])
        store.invalidate(A, cascade=True)
        store.upsert_optimistic(B, _record(B))
        store.restore(snap)
        assert store.get(A).is_ready
        assert store.get(A0).is_ready
        assert B not in store

    def test_restore_does_not_revive_finished_fetch(self):
        store, _, _ = _store()
        store.begin_fetch(B)
        token = store.fetch_token(B)
        snap = store.snapshot([B])
        store.invalidate(B)
        store.resolve_fetch(B, _record(B), token)
        store.restore(snap)
        assert store.get(B).status is CacheStatus.IDLE
        assert store.begin_fetch(B) is True

    def test_entries_under(self):
        store, _, _ = _store()
        _ready(store, ROOT, A, A0, B)
        assert [c for c, _ in store.entries_under(A)] == [A, A0]

    def test_stats(self):
        store, _, _ = _store()
        _ready(store, ROOT, A)
        store.begin_fetch(B)
        store.upsert_optimistic(A, content="x")
        assert store.stats() == {"idle": 0, "loading": 1, "ready": 2, "error": 0,
                                 "optimistic": 1}

    def test_records_and_keys(self):
        store, _, _ = _store()
        _ready(store, A, ROOT)
        store.begin_fetch(B)
        assert [r.coord for r in store.records()] == [ROOT, A]
        assert store.keys() == ["1-1", "1-1-0", "1-1-3"]
