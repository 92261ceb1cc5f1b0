"""Interaction state tracker — hover, selection, expansion and drag flags.

One tracker exists per open map. It owns the InteractionState of every tile
and enforces, on every mutation:
- at most one tile is dragged at a time
- at most one tile is selected at a time
- tiles without children cannot be expanded
- clearing a flag that is not set changes nothing

effective_state() derives render hints from the flags and the cache entry;
the result is recomputed on every call and never stored.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from hexmap.engine.tile_cache import TileCacheStore
    from hexmap.util.events import EventBus

from hexmap.models.coord import Coord
from hexmap.models.interaction import EffectiveState, InteractionState, VisualStatus
from hexmap.models.tile import CacheEntry, CacheStatus
from hexmap.util import coord_codec
from hexmap.util.events import InteractionChanged

log = logging.getLogger(__name__)

_DRAG_FLAGS = ("is_dragged", "is_drag_over", "is_hovering")


class InteractionTracker:
    """Per-tile interaction state layered over the tile cache.

    Args:
        cache: Tile cache consulted for ``has_children`` and fetch status.
        event_bus: Bus notified of every flag change.
    """

    def __init__(self, cache: TileCacheStore, event_bus: EventBus | None = None) -> None:
        self._cache = cache
        self._events = event_bus
        self._states: dict[str, InteractionState] = {}
        self._coords: dict[str, Coord] = {}

    # -- Query -----------------------------------------------------------

    def state(self, coord: Coord) -> InteractionState:
        """Copy of the flags of ``coord`` (all False if never touched)."""
        current = self._states.get(coord_codec.encode(coord))
        return current.copy() if current else InteractionState()

    def dragged(self) -> Optional[Coord]:
        """The tile currently flagged as dragged, if any."""
        found = self._with_flag("is_dragged")
        return found[0] if found else None

    def selected(self) -> Optional[Coord]:
        found = self._with_flag("is_selected")
        return found[0] if found else None

    def expanded(self) -> list[Coord]:
        """All expanded tiles, ancestors first."""
        return self._with_flag("is_expanded")

    def visible_coords(self, roots: Iterable[Coord],
                       max_depth: Optional[int] = None) -> list[Coord]:
        """Roots plus the children of every visible expanded tile.

        Args:
            roots: Tiles shown at the top level of the view.
            max_depth: Deepest level below a root that is still reported.
        """
        seen: set[Coord] = set()
        ordered: list[Coord] = []
        queue = deque((r, 0) for r in roots)
        while queue:
            coord, level = queue.popleft()
            if coord in seen:
                continue
            seen.add(coord)
            ordered.append(coord)
            if max_depth is not None and level >= max_depth:
                continue
            if self.state(coord).is_expanded:
                queue.extend((c, level + 1) for c in coord_codec.children(coord))
        return ordered

    # -- Mutators --------------------------------------------------------

    def set_hover(self, coord: Coord, on: bool = True) -> bool:
        return self._update(coord, "is_hovered", on)

    def set_hovering(self, coord: Coord, on: bool = True) -> bool:
        return self._update(coord, "is_hovering", on)

    def set_drag_over(self, coord: Coord, on: bool = True) -> bool:
        return self._update(coord, "is_drag_over", on)

    def set_selected(self, coord: Coord, on: bool = True) -> bool:
        """Select (or deselect) a tile; selecting clears the old selection."""
        if on:
            for other in self._with_flag("is_selected"):
                if other != coord:
                    self._update(other, "is_selected", False)
        return self._update(coord, "is_selected", on)

    def set_dragged(self, coord: Coord, on: bool = True) -> bool:
        """Flag the drag source; any other dragged tile is cleared first."""
        if on:
            for other in self._with_flag("is_dragged"):
                if other != coord:
                    self._update(other, "is_dragged", False)
        return self._update(coord, "is_dragged", on)

    def toggle_expanded(self, coord: Coord) -> bool:
        """Flip expansion of ``coord``.

        Expanding a tile whose cached record has no children (or that is not
        cached) does nothing.

        Returns:
            The new value of ``is_expanded``.
        """
        if self.state(coord).is_expanded:
            self._update(coord, "is_expanded", False)
            return False
        return self.set_expanded(coord, True)

    def set_expanded(self, coord: Coord, on: bool = True) -> bool:
        """Set expansion of ``coord``; returns the resulting value."""
        if on:
            record = self._cache.get_record(coord)
            if record is None or not record.has_children:
                log.debug("Not expanding %s: no children", coord_codec.encode(coord))
                return self.state(coord).is_expanded
        self._update(coord, "is_expanded", on)
        return on

    def clear_drag_flags(self) -> None:
        """Clear dragged / drag-over / hovering on every tile."""
        for flag in _DRAG_FLAGS:
            for coord in self._with_flag(flag):
                self._update(coord, flag, False)

    def rebase(self, old: Coord, new: Coord, swap: bool = False) -> None:
        """Carry the flags of the subtree at ``old`` over to ``new``.

        Used after a confirmed move so that expanded and selected tiles stay
        expanded and selected at their new address. With ``swap`` the subtree
        at ``new`` moves to ``old`` in exchange.
        """
        moved = self._take_subtree(old)
        swapped = self._take_subtree(new) if swap else {}
        for coord, state in moved.items():
            self._put(coord_codec.rebase(coord, old, new), state)
        for coord, state in swapped.items():
            self._put(coord_codec.rebase(coord, new, old), state)

    def clear(self) -> None:
        """Forget every flag (teardown)."""
        self._states.clear()
        self._coords.clear()

    # -- Derived state ---------------------------------------------------

    def effective_state(self, coord: Coord, can_edit: bool = False) -> EffectiveState:
        """Combine interaction flags with the cache entry into render hints."""
        entry = self._cache.get(coord)
        flags = self.state(coord)
        visual = _visual_status(entry)

        pending: tuple[str, ...] = ()
        if flags.is_expanded:
            pending = tuple(
                coord_codec.encode(c) for c in coord_codec.children(coord)
                if self._cache.get(c).status in (CacheStatus.IDLE, CacheStatus.LOADING)
            )

        spinner = entry.status is CacheStatus.LOADING or bool(pending)
        return EffectiveState(
            key=coord_codec.encode(coord),
            test_id=coord_codec.test_id(coord),
            visual_status=visual,
            flags=flags,
            is_optimistic=entry.optimistic,
            can_edit=can_edit,
            show_spinner=spinner,
            pending_children=pending,
        )

    # -- Internal --------------------------------------------------------

    def _update(self, coord: Coord, flag: str, value: bool) -> bool:
        """Set one flag; returns False if it already had that value."""
        key = coord_codec.encode(coord)
        state = self._states.get(key)
        if state is None:
            if not value:
                return False
            state = InteractionState()
            self._states[key] = state
            self._coords[key] = coord
        if getattr(state, flag) == value:
            return False
        setattr(state, flag, value)
        if state.is_default:
            del self._states[key]
            del self._coords[key]
        if self._events is not None:
            self._events.emit(InteractionChanged(key=key, flag=flag, value=value))
        return True

    def _with_flag(self, flag: str) -> list[Coord]:
        return [self._coords[k] for k in sorted(self._states)
                if getattr(self._states[k], flag)]

    def _take_subtree(self, base: Coord) -> dict[Coord, InteractionState]:
        taken = {}
        for key in list(self._states):
            coord = self._coords[key]
            if coord == base or coord_codec.is_descendant_of(coord, base):
                taken[coord] = self._states.pop(key)
                del self._coords[key]
        return taken

    def _put(self, coord: Coord, state: InteractionState) -> None:
        key = coord_codec.encode(coord)
        self._states[key] = state
        self._coords[key] = coord


def _visual_status(entry: CacheEntry) -> VisualStatus:
    """What to draw for a cache entry.

    Any failed fetch gets a retry placeholder, even when an older record is
    still cached. A stale record stays drawn while it is refetched.
    """
    if entry.status is CacheStatus.ERROR:
        return VisualStatus.RETRY
    if entry.record is not None:
        return VisualStatus.READY
    if entry.status is CacheStatus.LOADING:
        return VisualStatus.LOADING
    return VisualStatus.EMPTY
