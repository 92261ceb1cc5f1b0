"""Map context — builds and wires the services of one open map.

Opening a map:
1. Load configuration (cache.yaml)
2. Create services (event bus, cache, tracker, loader, drag/drop, actions, sync)
3. Wire event handlers between services
4. Load the visible tiles
5. Start the background sync

Closing a map stops the sync, cancels pending fetches and tears the cache
down. Nothing
here is global: every open map gets its own Services container, passed to
whoever needs it.

Usage:
    services = await open_map(source, session, roots=[coord_codec.root(7)])
    services.actions.on_select(...)
    await close_map(services)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from hexmap.engine.drag_drop import DragDropCoordinator
from hexmap.engine.interaction import InteractionTracker
from hexmap.engine.sync_engine import SyncEngine
from hexmap.engine.tile_actions import TileActions
from hexmap.engine.tile_cache import TileCacheStore
from hexmap.engine.tile_loader import TileLoader
from hexmap.loaders.cache_config_loader import CacheConfig, load_cache_config
from hexmap.models.coord import Coord
from hexmap.persistence.tile_source import SessionSource, TileSource
from hexmap.util import coord_codec
from hexmap.util.events import EventBus, MoveRejected, TilesInvalidated

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Container for all services of one map
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Holds references to all services of an open map."""

    config: CacheConfig = field(default_factory=CacheConfig)
    event_bus: Optional[EventBus] = None
    cache: Optional[TileCacheStore] = None
    tracker: Optional[InteractionTracker] = None
    loader: Optional[TileLoader] = None
    drag_drop: Optional[DragDropCoordinator] = None
    actions: Optional[TileActions] = None
    sync: Optional[SyncEngine] = None
    roots: list[Coord] = field(default_factory=list)


# ===================================================================
# 1. Create services
# ===================================================================


def create_services(source: TileSource, session: SessionSource,
                    config: CacheConfig | None = None,
                    clock: Callable[[], float] | None = None) -> Services:
    """Instantiate all services with proper dependency injection.

    Args:
        source: Persistence layer (fetch_tile / move_tile).
        session: Provides the current user id.
        config: Cache configuration; defaults if None.
        clock: Time source for the cache (tests pass a fake clock).

    Returns:
        Populated :class:`Services` container.
    """
    cfg = config or CacheConfig()
    event_bus = EventBus()
    if clock is None:
        cache = TileCacheStore(cfg, event_bus)
    else:
        cache = TileCacheStore(cfg, event_bus, clock=clock)
    tracker = InteractionTracker(cache, event_bus)
    loader = TileLoader(cache, source, tracker, cfg)
    drag_drop = DragDropCoordinator(cache, tracker, source, session, event_bus, cfg)
    actions = TileActions(cache, tracker, loader, drag_drop, session)

    services = Services(
        config=cfg,
        event_bus=event_bus,
        cache=cache,
        tracker=tracker,
        loader=loader,
        drag_drop=drag_drop,
        actions=actions,
    )
    sync_clock = clock if clock is not None else time.time
    services.sync = SyncEngine(cache, loader, tracker, lambda: services.roots,
                               cfg, event_bus, clock=sync_clock)
    return services


# ===================================================================
# 2. Wire up event handlers
# ===================================================================


def wire_events(services: Services) -> None:
    """Register handlers connecting services via the EventBus.

    Invalidated tiles drop their pending fetch, so the next load starts
    a fresh one instead of awaiting an outdated result.
    """
    bus = services.event_bus
    loader = services.loader

    def _cancel_outdated(evt: TilesInvalidated) -> None:
        for key in evt.keys:
            loader.cancel(coord_codec.decode(key))

    bus.on(TilesInvalidated, _cancel_outdated)
    bus.on(MoveRejected, lambda evt: log.warning(
        "Move %s -> %s rejected: %s", evt.source_key, evt.target_key,
        (evt.cause or evt.error).value))


# ===================================================================
# Open / close
# ===================================================================


async def open_map(source: TileSource, session: SessionSource,
                   roots: Iterable[Coord] = (),
                   config: CacheConfig | None = None,
                   config_path: str | None = None) -> Services:
    """Create and wire the services of a map and load its visible tiles.

    Args:
        source: Persistence layer.
        session: Provides the current user id.
        roots: Tiles shown at the top level.
        config: Explicit configuration (wins over ``config_path``).
        config_path: YAML file to load the configuration from.
    """
    if config is None and config_path is not None:
        config = load_cache_config(config_path)
    services = create_services(source, session, config)
    wire_events(services)
    services.roots = list(roots)
    if services.roots:
        await services.actions.load_view(services.roots)
    services.sync.start()
    log.info("Map opened (%d roots, %d tiles cached)",
             len(services.roots), len(services.cache))
    return services


async def close_map(services: Services) -> None:
    """Stop the sync, cancel pending fetches and tear the map's state down."""
    if services.sync is not None:
        await services.sync.stop()
    if services.drag_drop is not None:
        services.drag_drop.cancel()
    if services.loader is not None:
        await services.loader.close()
    if services.tracker is not None:
        services.tracker.clear()
    if services.cache is not None:
        services.cache.clear()
    if services.event_bus is not None:
        services.event_bus.clear()
    log.info("Map closed")
