"""Drag/drop coordinator — moves tiles across the hex grid.

Handles the lifecycle of one drag gesture:
  IDLE → DRAGGING → COMMITTING → IDLE

Drag-start is refused for tiles the current user cannot edit. While
dragging, every drag-over re-validates the candidate target. A drop on a
valid target applies the move optimistically to the cache, asks the
persistence layer to perform it, and then either invalidates the affected
subtrees (success) or rolls the optimistic entries back (failure).

Failures never raise out of drop(); they are returned as DropResult and
published as MoveRejected events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from hexmap.engine.interaction import InteractionTracker
    from hexmap.engine.tile_cache import TileCacheStore
    from hexmap.loaders.cache_config_loader import CacheConfig
    from hexmap.persistence.tile_source import SessionSource, TileSource
    from hexmap.util.events import EventBus

from hexmap.engine.permissions import can_edit, can_edit_record
from hexmap.models.coord import Coord
from hexmap.models.drag import DragPhase, DragSession, DropOperation, DropResult
from hexmap.util import coord_codec
from hexmap.util.errors import ErrorKind, move_error_kind
from hexmap.util.events import DragCancelled, DragStarted, MoveCommitted, MoveRejected

log = logging.getLogger(__name__)

_Verdict = tuple[bool, Optional[ErrorKind], Optional[DropOperation]]


class DragDropCoordinator:
    """Owner of the single drag session of a map.

    Args:
        cache: Tile cache holding the records being moved.
        tracker: Interaction tracker carrying the drag flags.
        source: Persistence layer providing move_tile().
        session: Provides the current user id.
        event_bus: Bus notified of drag lifecycle events.
        config: Cache configuration (optimistic updates, root dragging).
    """

    def __init__(self, cache: TileCacheStore, tracker: InteractionTracker,
                 source: TileSource, session: SessionSource,
                 event_bus: EventBus | None = None,
                 config: CacheConfig | None = None) -> None:
        self._cache = cache
        self._tracker = tracker
        self._source = source
        self._user = session
        self._events = event_bus
        self._optimistic = config.enable_optimistic_updates if config else True
        self._allow_root_drag = config.allow_root_drag if config else False
        self._session: Optional[DragSession] = None

    # -- Query -----------------------------------------------------------

    @property
    def session(self) -> Optional[DragSession]:
        """Copy of the active session, or None."""
        return replace(self._session) if self._session else None

    @property
    def phase(self) -> DragPhase:
        return self._session.phase if self._session else DragPhase.IDLE

    def can_drag(self, coord: Coord) -> bool:
        """Whether a drag could start on ``coord`` right now."""
        if coord.is_root and not self._allow_root_drag:
            return False
        return can_edit_record(self._user.current_user_id(), self._cache.get_record(coord))

    def is_valid_target(self, coord: Coord) -> bool:
        s = self._session
        return s is not None and s.target == coord and s.is_valid_target

    # -- Gestures --------------------------------------------------------

    def start(self, coord: Coord) -> bool:
        """Begin dragging ``coord``.

        Returns:
            True if a session was created. A refused start leaves no trace:
            no session, no dragged flag, no event.
        """
        if self.phase is DragPhase.COMMITTING:
            log.debug("Drag start ignored: a drop is being committed")
            return False
        if not self.can_drag(coord):
            log.debug("Drag refused on %s", coord_codec.encode(coord))
            return False
        if self._session is not None:
            self.cancel()

        self._session = DragSession(source=coord)
        self._tracker.set_dragged(coord, True)
        log.debug("Drag started on %s", coord_codec.encode(coord))
        self._emit(DragStarted(source_key=coord_codec.encode(coord)))
        return True

    def over(self, coord: Coord) -> bool:
        """The drag moved over ``coord``; the latest call wins.

        Returns:
            Whether ``coord`` is a valid drop target.
        """
        s = self._session
        if s is None or s.phase is not DragPhase.DRAGGING:
            return False
        if s.target is not None and s.target != coord:
            self._tracker.set_drag_over(s.target, False)

        valid, reason, operation = self._validate(s.source, coord)
        s.target = coord
        s.is_valid_target = valid
        s.reason = reason
        s.operation = operation
        self._tracker.set_drag_over(coord, valid)
        self._tracker.set_hovering(s.source, coord != s.source)
        return valid

    def leave(self, coord: Coord) -> None:
        """The drag left ``coord``."""
        s = self._session
        if s is None or s.phase is not DragPhase.DRAGGING or s.target != coord:
            return
        self._tracker.set_drag_over(coord, False)
        self._tracker.set_hovering(s.source, False)
        s.target = None
        s.is_valid_target = False
        s.reason = None
        s.operation = None

    def cancel(self) -> bool:
        """Abort the drag without touching the cache.

        A session that is already committing cannot be cancelled.
        """
        s = self._session
        if s is None or s.phase is not DragPhase.DRAGGING:
            return False
        self._end()
        log.debug("Drag cancelled on %s", coord_codec.encode(s.source))
        self._emit(DragCancelled(source_key=coord_codec.encode(s.source)))
        return True

    async def drop(self, coord: Coord) -> DropResult:
        """Drop the dragged tile on ``coord`` and commit the move."""
        s = self._session
        if s is None:
            log.debug("Drop on %s ignored: no drag in progress", coord_codec.encode(coord))
            return DropResult(ok=False, target=coord, error=ErrorKind.MUTATION_REJECTED)
        if s.phase is DragPhase.COMMITTING:
            log.warning("Drop on %s ignored: a drop is already being committed",
                        coord_codec.encode(coord))
            return DropResult(ok=False, source=s.source, target=coord,
                              error=ErrorKind.MUTATION_REJECTED)

        source = s.source
        user = self._user.current_user_id()
        if not can_edit_record(user, self._cache.get_record(source)):
            return self._reject(source, coord, None, ErrorKind.PERMISSION_DENIED)
        valid, reason, operation = self._validate(source, coord)
        if not valid:
            return self._reject(source, coord, operation, reason or ErrorKind.INVALID_MOVE)

        s.phase = DragPhase.COMMITTING
        s.target = coord
        s.operation = operation
        change_id = self._apply_optimistic(source, coord, operation) if self._optimistic else None

        try:
            await self._source.move_tile(source, coord)
        except asyncio.CancelledError:
            if change_id is not None:
                self._cache.rollback(change_id)
            self._end()
            raise
        except Exception as exc:
            kind = move_error_kind(exc)
            if change_id is not None:
                self._cache.rollback(change_id)
            log.warning("Move %s -> %s rejected: %s", coord_codec.encode(source),
                        coord_codec.encode(coord), exc)
            return self._reject(source, coord, operation,
                                ErrorKind.MUTATION_REJECTED, cause=kind)

        if change_id is not None:
            self._cache.commit(change_id)
        invalidated = self._reconcile(source, coord)
        self._end()
        self._tracker.rebase(source, coord, swap=operation is DropOperation.SWAP)
        log.info("Move committed: %s -> %s (%s)", coord_codec.encode(source),
                 coord_codec.encode(coord), operation.value)
        self._emit(MoveCommitted(source_key=coord_codec.encode(source),
                                 target_key=coord_codec.encode(coord),
                                 operation=operation.value))
        return DropResult(ok=True, source=source, target=coord, operation=operation,
                          invalidated=tuple(invalidated))

    # -- Internal --------------------------------------------------------

    def _validate(self, source: Coord, target: Coord) -> _Verdict:
        """Decide whether ``source`` may be dropped on ``target``."""
        if target == source or target.map_id != source.map_id or target.is_root:
            return False, ErrorKind.INVALID_MOVE, None
        # Moving into its own subtree would create a cycle; swapping with an
        # ancestor would too.
        if (coord_codec.is_descendant_of(target, source)
                or coord_codec.is_descendant_of(source, target)):
            return False, ErrorKind.INVALID_MOVE, None

        user = self._user.current_user_id()
        source_record = self._cache.get_record(source)
        parent_record = self._cache.get_record(coord_codec.parent(target))
        context = parent_record or source_record
        if context is None or not can_edit(user, context.owner_id):
            return False, ErrorKind.PERMISSION_DENIED, None

        if self._cache.has_record(target):
            if not can_edit_record(user, self._cache.get_record(target)):
                return False, ErrorKind.PERMISSION_DENIED, DropOperation.SWAP
            return True, None, DropOperation.SWAP
        return True, None, DropOperation.MOVE

    def _apply_optimistic(self, source: Coord, target: Coord,
                          operation: DropOperation) -> Optional[str]:
        """Show the move in the cache before it is confirmed."""
        placements = []
        vacated = []
        bases = [(source, target)]
        if operation is DropOperation.SWAP:
            bases.append((target, source))
        for old_base, new_base in bases:
            for coord, entry in self._cache.entries_under(old_base):
                vacated.append(coord)
                if entry.record is not None:
                    new = coord_codec.rebase(coord, old_base, new_base)
                    placements.append((new, entry.record.moved_to(new)))

        change_id: Optional[str] = None
        for coord in vacated:
            change_id = self._cache.remove_optimistic(coord, change_id)
        for coord, record in placements:
            change_id = self._cache.upsert_optimistic(coord, record, change_id)
        return change_id

    def _reconcile(self, source: Coord, target: Coord) -> list[str]:
        """Invalidate the old and new parent subtrees after a confirmed move."""
        invalidated: set[str] = set()
        for coord in (source, target):
            base = coord_codec.parent(coord) or coord
            invalidated.update(self._cache.invalidate(base, cascade=True))
        return sorted(invalidated)

    def _reject(self, source: Coord, target: Coord,
                operation: Optional[DropOperation], kind: ErrorKind,
                cause: Optional[ErrorKind] = None) -> DropResult:
        self._end()
        self._emit(MoveRejected(source_key=coord_codec.encode(source),
                                target_key=coord_codec.encode(target),
                                error=kind, cause=cause))
        return DropResult(ok=False, source=source, target=target,
                          operation=operation, error=kind, cause=cause)

    def _end(self) -> None:
        self._tracker.clear_drag_flags()
        self._session = None

    def _emit(self, event: object) -> None:
        if self._events is not None:
            self._events.emit(event)
