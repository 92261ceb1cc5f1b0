"""Tile cache store — fetch status and data of every referenced tile.

Responsibilities:
- Map coordinate keys to cache entries (IDLE → LOADING → READY / ERROR)
- At most one outstanding fetch per coordinate
- Freshness window: fresh READY entries are not refetched
- Invalidation, optionally cascading to every cached descendant
- Optimistic updates with per-change snapshots for commit / rollback

The store never performs I/O and never retries; the tile loader dispatches
fetches and reports their outcome through resolve_fetch().
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Optional, Union

if TYPE_CHECKING:
    from hexmap.loaders.cache_config_loader import CacheConfig
    from hexmap.util.events import EventBus

from hexmap.models.coord import Coord
from hexmap.models.tile import IDLE_ENTRY, CacheEntry, CacheStatus, TileRecord
from hexmap.util import coord_codec
from hexmap.util.constants import CHANGE_ID_PREFIX, DEFAULT_MAX_AGE_SECONDS
from hexmap.util.errors import ErrorKind, error_kind
from hexmap.util.events import TileFetched, TileFetchFailed, TilesInvalidated

log = logging.getLogger(__name__)

FetchOutcome = Union[TileRecord, ErrorKind, BaseException]

# key -> entry before the change touched it (None: the key did not exist)
Snapshot = dict[str, Optional[CacheEntry]]


@dataclass
class OptimisticChange:
    """Bookkeeping of one optimistic update, possibly spanning many keys."""

    change_id: str
    created_at: float
    previous: Snapshot = field(default_factory=dict)

    @property
    def keys(self) -> list[str]:
        return sorted(self.previous)


class TileCacheStore:
    """Process-local cache of tile records keyed by coordinate.

    Args:
        config: Cache configuration (freshness window).
        event_bus: Bus notified of fetch results and invalidations.
        clock: Time source used to stamp ``fetched_at``.
    """

    def __init__(self, config: CacheConfig | None = None,
                 event_bus: EventBus | None = None,
                 clock: Callable[[], float] = time.time) -> None:
        self._max_age = config.max_age_seconds if config else DEFAULT_MAX_AGE_SECONDS
        self._events = event_bus
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._coords: dict[str, Coord] = {}
        self._generation: dict[str, int] = {}
        # keys whose latest fetch ended while the entry was not LOADING
        self._settled: set[str] = set()
        self._changes: dict[str, OptimisticChange] = {}
        self._next_change: int = 1

    # -- Query -----------------------------------------------------------

    def get(self, coord: Coord) -> CacheEntry:
        """Return the entry of ``coord``; an IDLE placeholder if unknown."""
        return self._entries.get(coord_codec.encode(coord), IDLE_ENTRY)

    def get_record(self, coord: Coord) -> Optional[TileRecord]:
        return self.get(coord).record

    def has_record(self, coord: Coord) -> bool:
        """True if the entry is READY with a record."""
        return self.get(coord).is_ready

    def touch(self, coord: Coord) -> CacheEntry:
        """Register ``coord`` as IDLE if it is not known yet."""
        key = coord_codec.encode(coord)
        if key not in self._entries:
            self._set(key, coord, IDLE_ENTRY)
        return self._entries[key]

    def keys(self) -> list[str]:
        """All known keys in canonical order (ancestors first)."""
        return sorted(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, coord: object) -> bool:
        return isinstance(coord, Coord) and coord_codec.encode(coord) in self._entries

    def entries_under(self, coord: Coord) -> list[tuple[Coord, CacheEntry]]:
        """``coord`` (if known) and every known descendant, in key order."""
        found = []
        for key in self._subtree_keys(coord):
            found.append((self._coords[key], self._entries[key]))
        return found

    def records(self) -> Iterator[TileRecord]:
        """Iterate over the records of all READY entries."""
        for key in sorted(self._entries):
            entry = self._entries[key]
            if entry.is_ready:
                yield entry.record

    def stats(self) -> dict[str, int]:
        """Number of entries per status (plus ``optimistic``)."""
        counts = Counter(e.status.value for e in self._entries.values())
        result = {status.value: counts.get(status.value, 0) for status in CacheStatus}
        result["optimistic"] = sum(1 for e in self._entries.values() if e.optimistic)
        return result

    # -- Fetch lifecycle -------------------------------------------------

    def is_fresh(self, entry: CacheEntry) -> bool:
        """True if a READY entry is younger than the freshness window."""
        if not entry.is_ready:
            return False
        return self._clock() - entry.record.fetched_at < self._max_age

    def begin_fetch(self, coord: Coord) -> bool:
        """Mark ``coord`` LOADING if a fetch is needed.

        Returns:
            True if the caller must dispatch the fetch, False if one is
            already outstanding, the entry is fresh, or the entry belongs to
            a pending optimistic change.
        """
        key = coord_codec.encode(coord)
        entry = self._entries.get(key, IDLE_ENTRY)
        if entry.status is CacheStatus.LOADING:
            return False
        if entry.optimistic and entry.change_id in self._changes:
            return False
        if self.is_fresh(entry):
            return False

        # A stale record stays visible while it is refetched.
        self._set(key, coord, CacheEntry(status=CacheStatus.LOADING, record=entry.record))
        self._generation[key] = self._generation.get(key, 0) + 1
        self._settled.discard(key)
        log.debug("Fetch started: %s", key)
        return True

    def fetch_token(self, coord: Coord) -> int:
        """Generation of the current fetch of ``coord``."""
        return self._generation.get(coord_codec.encode(coord), 0)

    def resolve_fetch(self, coord: Coord, result: FetchOutcome,
                      token: Optional[int] = None) -> bool:
        """Record the outcome of a fetch.

        Args:
            coord: Fetched coordinate.
            result: The fetched record, or the failure (kind or exception).
            token: Generation returned by fetch_token() when the fetch was
                dispatched; a mismatch marks the result as outdated.

        Returns:
            True if the entry was updated, False for a late or outdated
            result (no LOADING entry, or a newer fetch is in flight).
        """
        key = coord_codec.encode(coord)
        entry = self._entries.get(key)
        if entry is None or entry.status is not CacheStatus.LOADING:
            if entry is not None and token in (None, self._generation.get(key, 0)):
                self._settled.add(key)
            log.debug("Ignoring late fetch result for %s", key)
            return False
        if token is not None and token != self._generation.get(key, 0):
            log.debug("Ignoring outdated fetch result for %s", key)
            return False

        if isinstance(result, TileRecord):
            if result.coord != coord:
                raise ValueError(
                    f"record for {coord_codec.encode(result.coord)} resolved as {key}"
                )
            record = replace(result, fetched_at=self._clock())
            self._set(key, coord, CacheEntry(status=CacheStatus.READY, record=record))
            log.debug("Fetch ready: %s", key)
            self._emit(TileFetched(key=key))
        else:
            kind = result if isinstance(result, ErrorKind) else error_kind(result)
            self._set(key, coord, CacheEntry(status=CacheStatus.ERROR,
                                             record=entry.record, error=kind))
            log.debug("Fetch failed: %s (%s)", key, kind.value)
            self._emit(TileFetchFailed(key=key, error=kind))
        return True

    def cancel_fetch(self, coord: Coord) -> bool:
        """Abandon the outstanding fetch of ``coord``.

        The entry falls back to READY if it still holds a record, else IDLE.
        A result arriving afterwards is ignored.
        """
        key = coord_codec.encode(coord)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.status is not CacheStatus.LOADING:
            self._settled.add(key)
            return False
        self._set(key, coord, _without_fetch(entry))
        log.debug("Fetch cancelled: %s", key)
        return True

    # -- Invalidation ----------------------------------------------------

    def invalidate(self, coord: Coord, cascade: bool = False) -> list[str]:
        """Reset ``coord`` (and with ``cascade`` its cached subtree) to IDLE.

        Returns:
            Keys whose entry was reset.
        """
        if cascade:
            keys = self._subtree_keys(coord)
        else:
            key = coord_codec.encode(coord)
            keys = [key] if key in self._entries else []

        reset = []
        for key in keys:
            if self._entries[key] != IDLE_ENTRY:
                self._entries[key] = IDLE_ENTRY
                reset.append(key)
        if reset:
            log.debug("Invalidated %d entries under %s", len(reset), coord_codec.encode(coord))
            self._emit(TilesInvalidated(keys=tuple(reset)))
        return reset

    def clear(self) -> None:
        """Drop every entry (teardown of the cache scope)."""
        count = len(self._entries)
        self._entries.clear()
        self._coords.clear()
        self._generation.clear()
        self._settled.clear()
        self._changes.clear()
        log.info("Tile cache cleared (%d entries)", count)

    # -- Optimistic updates ----------------------------------------------

    def upsert_optimistic(self, coord: Coord, record: Optional[TileRecord] = None,
                          change_id: Optional[str] = None, **changes: Any) -> str:
        """Apply a speculative update ahead of server confirmation.

        Either pass a full ``record`` to place at ``coord`` (any status), or
        field ``changes`` to merge into the READY record already cached there.

        Args:
            coord: Coordinate to update.
            record: Full replacement record.
            change_id: Existing change to extend; a new one is opened if None.
            **changes: TileRecord fields to merge (``owner_id``, ``content``,
                ``has_children``).

        Returns:
            The change id, for commit() or rollback().

        Raises:
            ValueError: If merging into an entry that is not READY.
        """
        key = coord_codec.encode(coord)
        current = self._entries.get(key)
        if record is None:
            if current is None or not current.is_ready:
                raise ValueError(f"cannot merge an optimistic update into non-ready {key}")
            record = replace(current.record, **changes)
        elif changes:
            record = replace(record, **changes)
        if record.coord != coord:
            record = record.moved_to(coord)

        cid = self._track(key, current, change_id)
        self._set(key, coord, CacheEntry(status=CacheStatus.READY, record=record,
                                         optimistic=True, change_id=cid))
        log.debug("Optimistic upsert %s (%s)", key, cid)
        return cid

    def remove_optimistic(self, coord: Coord, change_id: Optional[str] = None) -> str:
        """Speculatively empty ``coord`` (the old slot of a moved tile)."""
        key = coord_codec.encode(coord)
        cid = self._track(key, self._entries.get(key), change_id)
        self._set(key, coord, CacheEntry(status=CacheStatus.IDLE, optimistic=True,
                                         change_id=cid))
        log.debug("Optimistic removal %s (%s)", key, cid)
        return cid

    def commit(self, change_id: str) -> list[str]:
        """Accept a change: its entries lose the optimistic tag.

        Returns:
            Keys still carrying the change when it was committed.
        """
        change = self._changes.pop(change_id, None)
        if change is None:
            return []
        committed = []
        for key in change.keys:
            entry = self._entries.get(key)
            if entry is not None and entry.change_id == change_id:
                self._entries[key] = replace(entry, optimistic=False, change_id=None)
                committed.append(key)
        return committed

    def rollback(self, change_id: str) -> list[str]:
        """Undo a change, restoring the entries it replaced.

        Keys superseded since the change (refetched or invalidated) are left
        alone. A LOADING entry whose fetch has ended in the meantime comes
        back as READY (if it holds a record) or IDLE, so it can be fetched
        again.

        Returns:
            Keys restored to their earlier entry.
        """
        change = self._changes.pop(change_id, None)
        if change is None:
            return []
        restored = []
        for key, previous in change.previous.items():
            entry = self._entries.get(key)
            if entry is None or entry.change_id != change_id:
                continue
            if previous is None:
                self._drop(key)
            else:
                self._entries[key] = self._restorable(key, previous)
            restored.append(key)
        log.debug("Rolled back %s (%d entries)", change_id, len(restored))
        return sorted(restored)

    def pending_changes(self) -> list[OptimisticChange]:
        """Changes neither committed nor rolled back, oldest first."""
        return sorted(self._changes.values(), key=lambda c: (c.created_at, c.change_id))

    def rollback_all(self) -> None:
        for change in reversed(self.pending_changes()):
            self.rollback(change.change_id)

    # -- Snapshots -------------------------------------------------------

    def snapshot(self, coords: Iterable[Coord], subtree: bool = True) -> Snapshot:
        """Capture the entries of ``coords`` (and their cached subtrees)."""
        snap: Snapshot = {}
        for coord in coords:
            key = coord_codec.encode(coord)
            snap[key] = self._entries.get(key)
            if subtree:
                for sub in self._subtree_keys(coord):
                    snap[sub] = self._entries[sub]
        return snap

    def restore(self, snap: Snapshot) -> None:
        """Put back the entries captured by snapshot().

        Captured LOADING entries are restored as in rollback().
        """
        for key, entry in snap.items():
            if entry is None:
                self._drop(key)
            else:
                self._set(key, coord_codec.decode(key), self._restorable(key, entry))

    # -- Internal --------------------------------------------------------

    def _set(self, key: str, coord: Coord, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._coords[key] = coord

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        self._coords.pop(key, None)
        self._settled.discard(key)

    def _restorable(self, key: str, entry: CacheEntry) -> CacheEntry:
        """``entry`` as it may be put back; no LOADING without a live fetch."""
        if entry.status is CacheStatus.LOADING and key in self._settled:
            self._settled.discard(key)
            log.debug("Fetch of %s ended while replaced, not restoring LOADING", key)
            return _without_fetch(entry)
        return entry

    def _subtree_keys(self, coord: Coord) -> list[str]:
        """Known keys of ``coord`` and all of its descendants."""
        return sorted(
            key for key, c in self._coords.items()
            if c == coord or coord_codec.is_descendant_of(c, coord)
        )

    def _track(self, key: str, current: Optional[CacheEntry],
               change_id: Optional[str]) -> str:
        """Open or extend a change and remember the entry it replaces."""
        if change_id is None:
            change_id = f"{CHANGE_ID_PREFIX}_{self._next_change}"
            self._next_change += 1
        change = self._changes.get(change_id)
        if change is None:
            change = OptimisticChange(change_id=change_id, created_at=self._clock())
            self._changes[change_id] = change
        if key not in change.previous:
            change.previous[key] = current
        return change_id

    def _emit(self, event: object) -> None:
        if self._events is not None:
            self._events.emit(event)


def _without_fetch(entry: CacheEntry) -> CacheEntry:
    """READY if ``entry`` still holds a record, else IDLE."""
    if entry.record is not None:
        return CacheEntry(status=CacheStatus.READY, record=entry.record)
    return IDLE_ENTRY
