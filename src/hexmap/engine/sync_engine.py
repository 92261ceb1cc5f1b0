"""Background sync — periodic refresh of the visible tiles of a map.

Responsibilities:
- Every ``sync_interval_seconds``, refetch visible tiles that are no longer
  fresh (stale READY, IDLE or failed entries)
- Pause / resume without losing the schedule
- Track online status; passes are refused while offline and an immediate
  pass runs when the map comes back online or sync resumes
- Publish SyncStarted / SyncCompleted / SyncFailed on the event bus

The engine never writes entries itself; every refetch goes through the
tile loader.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Iterable, Optional

if TYPE_CHECKING:
    from hexmap.engine.interaction import InteractionTracker
    from hexmap.engine.tile_cache import TileCacheStore
    from hexmap.engine.tile_loader import TileLoader
    from hexmap.loaders.cache_config_loader import CacheConfig
    from hexmap.util.events import EventBus

from hexmap.models.coord import Coord
from hexmap.models.sync import SyncPhase, SyncResult, SyncStatus
from hexmap.models.tile import CacheStatus
from hexmap.util.constants import DEFAULT_MAX_DEPTH, DEFAULT_SYNC_INTERVAL_SECONDS
from hexmap.util.errors import ErrorKind
from hexmap.util.events import OnlineStatusChanged, SyncCompleted, SyncFailed, SyncStarted

log = logging.getLogger(__name__)


class SyncEngine:
    """Periodic background refresh of one map's visible tiles.

    Args:
        cache: Tile cache consulted for freshness.
        loader: Loader that performs the refetches.
        tracker: Interaction tracker providing the visible region.
        roots: Callable returning the map's current root tiles.
        config: Interval and depth settings.
        event_bus: Bus notified of sync progress.
        clock: Time source for the status timestamps.
    """

    def __init__(
        self,
        cache: TileCacheStore,
        loader: TileLoader,
        tracker: InteractionTracker,
        roots: Callable[[], Iterable[Coord]],
        config: CacheConfig | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._loader = loader
        self._tracker = tracker
        self._roots = roots
        self._events = event_bus
        self._clock = clock
        self._interval = config.sync_interval_seconds if config else DEFAULT_SYNC_INTERVAL_SECONDS
        self._max_depth = config.max_depth if config else DEFAULT_MAX_DEPTH
        self._status = SyncStatus()
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    @property
    def status(self) -> SyncStatus:
        """Copy of the current sync bookkeeping."""
        return replace(self._status)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Control ---------------------------------------------------------

    def start(self) -> bool:
        """Start the periodic loop on the running event loop.

        Returns:
            False if already running or the interval disables sync.
        """
        if self._interval <= 0:
            log.debug("Background sync disabled (interval %s)", self._interval)
            return False
        if self.is_running:
            return False
        self._status.phase = SyncPhase.RUNNING
        self._wake.clear()
        self._task = asyncio.ensure_future(self._run())
        log.info("Background sync started (every %.1fs)", self._interval)
        return True

    async def stop(self) -> None:
        """Stop the loop and wait for an in-progress pass to unwind."""
        task, self._task = self._task, None
        self._status.phase = SyncPhase.STOPPED
        self._status.next_sync_at = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Background sync stopped after %d passes", self._status.sync_count)

    def pause(self) -> bool:
        """Skip scheduled passes until resume()."""
        if self._status.phase is not SyncPhase.RUNNING:
            return False
        self._status.phase = SyncPhase.PAUSED
        log.debug("Background sync paused")
        return True

    def resume(self) -> bool:
        """Leave the paused state and run a pass right away."""
        if self._status.phase is not SyncPhase.PAUSED:
            return False
        self._status.phase = SyncPhase.RUNNING
        self._wake.set()
        log.debug("Background sync resumed")
        return True

    def set_online(self, is_online: bool) -> None:
        """Record a connectivity change; reconnecting triggers a pass."""
        if self._status.is_online == is_online:
            return
        self._status.is_online = is_online
        log.info("Tile source %s", "online" if is_online else "offline")
        self._emit(OnlineStatusChanged(is_online=is_online))
        if is_online and self._status.phase is SyncPhase.RUNNING:
            self._wake.set()

    # -- Passes ----------------------------------------------------------

    def stale_coords(self) -> list[Coord]:
        """Visible tiles a refresh pass would refetch."""
        stale = []
        for coord in self._tracker.visible_coords(self._roots(), self._max_depth):
            entry = self._cache.get(coord)
            if entry.status is CacheStatus.LOADING or entry.optimistic:
                continue
            if not self._cache.is_fresh(entry):
                stale.append(coord)
        return stale

    async def sync_now(self, force: bool = False) -> SyncResult:
        """Run one refresh pass immediately.

        Args:
            force: Run even while another pass is in progress.
        """
        started = self._clock()
        if self._status.is_syncing and not force:
            return SyncResult(ok=False, error="sync already in progress")
        if not self._status.is_online:
            return self._failed("offline", started)

        self._status.is_syncing = True
        self._status.last_error = None
        try:
            stale = self.stale_coords()
            self._emit(SyncStarted(stale=len(stale)))
            entries = await self._loader.load_many(stale)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return self._failed(str(exc) or type(exc).__name__, started)
        finally:
            self._status.is_syncing = False

        refreshed = sum(1 for e in entries.values() if e.is_ready)
        failed = sum(1 for e in entries.values()
                     if e.status is CacheStatus.ERROR and e.error is not ErrorKind.NOT_FOUND)
        now = self._clock()
        self._status.sync_count += 1
        self._status.last_sync_at = now
        log.debug("Sync pass: %d stale, %d refreshed, %d failed",
                  len(stale), refreshed, failed)
        self._emit(SyncCompleted(refreshed=refreshed, failed=failed))
        return SyncResult(ok=True, refreshed=refreshed, failed=failed,
                          duration=now - started)

    # -- Internal --------------------------------------------------------

    async def _run(self) -> None:
        while True:
            self._status.next_sync_at = self._clock() + self._interval
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
            if self._status.phase is not SyncPhase.RUNNING:
                continue
            await self.sync_now()

    def _failed(self, reason: str, started: float) -> SyncResult:
        self._status.error_count += 1
        self._status.last_error = reason
        log.warning("Sync pass failed: %s", reason)
        self._emit(SyncFailed(reason=reason))
        return SyncResult(ok=False, error=reason, duration=self._clock() - started)

    def _emit(self, event: object) -> None:
        if self._events is not None:
            self._events.emit(event)
