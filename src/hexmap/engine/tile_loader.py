"""Tile loader — dispatches fetches and records their outcome in the cache.

Responsibilities:
- Share one in-flight fetch per coordinate between concurrent callers
- Convert payloads into TileRecords and failures into ERROR entries
- Load every visible tile of a view (roots plus expanded children)
- Cancel pending fetches when a tile is unmounted or the map is closed

Fetch failures never propagate out of load(); callers inspect the entry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from hexmap.engine.interaction import InteractionTracker
    from hexmap.engine.tile_cache import TileCacheStore
    from hexmap.loaders.cache_config_loader import CacheConfig
    from hexmap.persistence.tile_source import TileSource

from hexmap.models.contracts import parse_tile
from hexmap.models.coord import Coord
from hexmap.models.tile import CacheEntry, CacheStatus
from hexmap.util import coord_codec
from hexmap.util.errors import ErrorKind, error_kind

log = logging.getLogger(__name__)


class TileLoader:
    """Async fetch orchestrator over the tile cache.

    Args:
        cache: Store recording fetch status and results.
        source: Persistence layer providing fetch_tile().
        tracker: Interaction tracker deciding which tiles are visible.
        config: Cache configuration (max depth of visible loads).
    """

    def __init__(self, cache: TileCacheStore, source: TileSource,
                 tracker: InteractionTracker | None = None,
                 config: CacheConfig | None = None) -> None:
        self._cache = cache
        self._source = source
        self._tracker = tracker
        self._max_depth = config.max_depth if config else None
        self._inflight: dict[str, asyncio.Task[CacheEntry]] = {}

        self.fetches_dispatched: int = 0

    @property
    def pending(self) -> list[str]:
        """Keys with a fetch in flight."""
        return sorted(self._inflight)

    async def load(self, coord: Coord) -> CacheEntry:
        """Make sure ``coord`` is fetched and return its entry.

        Concurrent calls for the same coordinate await the same fetch.
        A fresh READY entry is returned without fetching.
        """
        key = coord_codec.encode(coord)
        task = self._inflight.get(key)
        if task is None:
            if not self._cache.begin_fetch(coord):
                return self._cache.get(coord)
            task = asyncio.ensure_future(self._fetch(coord, self._cache.fetch_token(coord)))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
            self.fetches_dispatched += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self._cache.get(coord)
            raise

    async def load_many(self, coords: Iterable[Coord]) -> dict[str, CacheEntry]:
        """Load several tiles concurrently; returns entries by key."""
        coords = list(coords)
        entries = await asyncio.gather(*(self.load(c) for c in coords))
        return {coord_codec.encode(c): e for c, e in zip(coords, entries)}

    async def load_visible(self, roots: Iterable[Coord]) -> dict[str, CacheEntry]:
        """Load the roots and every child of an expanded visible tile."""
        if self._tracker is None:
            return await self.load_many(roots)
        return await self.load_many(self._tracker.visible_coords(roots, self._max_depth))

    async def retry(self, coord: Coord) -> CacheEntry:
        """Refetch a tile whose last fetch failed."""
        if self._cache.get(coord).status is CacheStatus.ERROR:
            return await self.load(coord)
        return self._cache.get(coord)

    def cancel(self, coord: Coord) -> bool:
        """Cancel the pending fetch of ``coord`` (e.g. the tile unmounted)."""
        task = self._inflight.pop(coord_codec.encode(coord), None)
        if task is None:
            return False
        task.cancel()
        self._cache.cancel_fetch(coord)
        return True

    def cancel_all(self) -> int:
        """Cancel every pending fetch; returns how many were cancelled."""
        keys = list(self._inflight)
        for key in keys:
            self.cancel(coord_codec.decode(key))
        if keys:
            log.info("Cancelled %d pending fetches", len(keys))
        return len(keys)

    async def close(self) -> None:
        """Cancel pending fetches and wait for them to unwind."""
        tasks = list(self._inflight.values())
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- Internal --------------------------------------------------------

    async def _fetch(self, coord: Coord, token: int) -> CacheEntry:
        key = coord_codec.encode(coord)
        try:
            raw = await self._source.fetch_tile(coord)
            record = parse_tile(raw, coord)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            kind = error_kind(exc)
            if kind is ErrorKind.NOT_FOUND:
                log.debug("Tile %s not found", key)
            else:
                log.warning("Fetch of %s failed: %s", key, exc)
            self._cache.resolve_fetch(coord, kind, token=token)
        else:
            self._cache.resolve_fetch(coord, record, token=token)
        return self._cache.get(coord)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
