"""Tile actions — the hooks the render layer calls for user gestures.

Each hook routes a gesture to the interaction tracker, the drag/drop
coordinator or the tile loader. effective_state() is the single read
accessor the renderer uses to draw a tile.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from hexmap.engine.drag_drop import DragDropCoordinator
    from hexmap.engine.interaction import InteractionTracker
    from hexmap.engine.tile_cache import TileCacheStore
    from hexmap.engine.tile_loader import TileLoader
    from hexmap.persistence.tile_source import SessionSource

from hexmap.engine.permissions import can_edit_record
from hexmap.models.coord import Coord
from hexmap.models.drag import DropResult
from hexmap.models.interaction import EffectiveState
from hexmap.models.tile import CacheEntry
from hexmap.util import coord_codec

log = logging.getLogger(__name__)


class TileActions:
    """Event hooks and state accessor for one open map."""

    def __init__(self, cache: TileCacheStore, tracker: InteractionTracker,
                 loader: TileLoader, drag_drop: DragDropCoordinator,
                 session: SessionSource) -> None:
        self._cache = cache
        self._tracker = tracker
        self._loader = loader
        self._drag = drag_drop
        self._session = session

    # -- Reads -----------------------------------------------------------

    def can_edit(self, coord: Coord) -> bool:
        return can_edit_record(self._session.current_user_id(), self._cache.get_record(coord))

    def effective_state(self, coord: Coord) -> EffectiveState:
        return self._tracker.effective_state(coord, can_edit=self.can_edit(coord))

    # -- Loading ---------------------------------------------------------

    async def load_view(self, roots: Iterable[Coord]) -> dict[str, CacheEntry]:
        """Fetch every tile visible from ``roots``."""
        return await self._loader.load_visible(roots)

    async def on_retry(self, coord: Coord) -> CacheEntry:
        return await self._loader.retry(coord)

    def on_unmount(self, coord: Coord) -> None:
        """The tile left the screen; its pending fetch is no longer needed."""
        self._loader.cancel(coord)

    # -- Pointer ---------------------------------------------------------

    def on_hover_enter(self, coord: Coord) -> None:
        self._tracker.set_hover(coord, True)

    def on_hover_leave(self, coord: Coord) -> None:
        self._tracker.set_hover(coord, False)

    def on_select(self, coord: Coord) -> None:
        self._tracker.set_selected(coord, True)

    async def on_toggle_expand(self, coord: Coord) -> bool:
        """Toggle expansion; expanding fetches the six children.

        Returns:
            Whether the tile is now expanded.
        """
        expanded = self._tracker.toggle_expanded(coord)
        if expanded:
            await self._loader.load_many(coord_codec.children(coord))
        return expanded

    # -- Drag and drop ---------------------------------------------------

    def on_drag_start(self, coord: Coord) -> bool:
        return self._drag.start(coord)

    def on_drag_over(self, coord: Coord) -> bool:
        return self._drag.over(coord)

    def on_drag_leave(self, coord: Coord) -> None:
        self._drag.leave(coord)

    async def on_drag_drop(self, coord: Coord) -> DropResult:
        result = await self._drag.drop(coord)
        if not result.ok:
            log.info("Drop on %s rejected (%s)", coord_codec.encode(coord),
                     result.error.value if result.error else "unknown")
        return result

    def on_drag_cancel(self, coord: Optional[Coord] = None) -> bool:
        """Drag ended outside any tile, or was aborted (escape)."""
        return self._drag.cancel()
