"""Drag session model — state machine for one drag-and-drop gesture.

A DragSession tracks the dragged source tile, the candidate target under
the pointer, and whether dropping there would be accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from hexmap.models.coord import Coord
from hexmap.util.errors import ErrorKind


class DragPhase(Enum):
    """Phases of a drag gesture."""

    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"


class DropOperation(Enum):
    """What a drop on the current target would do."""

    MOVE = "move"   # target slot is empty
    SWAP = "swap"   # target slot holds a tile; the two exchange places


@dataclass
class DragSession:
    """State of an in-progress drag.

    Attributes:
        source: Coordinate of the dragged tile.
        target: Candidate drop coordinate under the pointer.
        is_valid_target: Whether dropping on ``target`` would be accepted.
        operation: Move or swap, once a target is known.
        phase: DRAGGING until a drop starts, then COMMITTING.
        reason: Why the current target is invalid.
    """

    source: Coord
    target: Optional[Coord] = None
    is_valid_target: bool = False
    operation: Optional[DropOperation] = None
    phase: DragPhase = DragPhase.DRAGGING
    reason: Optional[ErrorKind] = None


@dataclass(frozen=True)
class DropResult:
    """Outcome of a drop attempt.

    Attributes:
        ok: The move was confirmed by the persistence layer.
        source: Dragged coordinate (None when there was no session).
        target: Drop coordinate.
        operation: Move or swap.
        error: Why the drop was refused or rolled back. A failed commit always
            reports MUTATION_REJECTED.
        cause: The specific failure reported by the persistence layer
            (INVALID_MOVE, CONFLICT, ...) when a commit failed.
        invalidated: Keys reset to IDLE after a confirmed move.
    """

    ok: bool
    source: Optional[Coord] = None
    target: Optional[Coord] = None
    operation: Optional[DropOperation] = None
    error: Optional[ErrorKind] = None
    cause: Optional[ErrorKind] = None
    invalidated: tuple[str, ...] = field(default_factory=tuple)
