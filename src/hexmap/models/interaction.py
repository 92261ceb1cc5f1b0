"""Per-tile interaction flags and the derived render state."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum


@dataclass
class InteractionState:
    """Interaction flags of one tile.

    Attributes:
        is_dragged: The tile is the source of the active drag.
        is_hovered: The pointer is over the tile.
        is_selected: The tile is the current selection.
        is_expanded: The tile shows its children.
        is_drag_over: A drag is currently over this tile.
        is_hovering: The tile is being carried over a candidate target.
    """

    is_dragged: bool = False
    is_hovered: bool = False
    is_selected: bool = False
    is_expanded: bool = False
    is_drag_over: bool = False
    is_hovering: bool = False

    @property
    def is_default(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def copy(self) -> InteractionState:
        return InteractionState(**{f.name: getattr(self, f.name) for f in fields(self)})


class VisualStatus(Enum):
    """What the renderer should draw for a tile."""

    EMPTY = "empty"        # nothing cached, nothing in flight
    LOADING = "loading"
    READY = "ready"
    RETRY = "retry"        # fetch failed; draw a retry-capable placeholder


@dataclass(frozen=True)
class EffectiveState:
    """Render hints for one tile, derived on demand.

    Attributes:
        key: Canonical coordinate key.
        test_id: Stable UI-test identifier.
        visual_status: What to draw.
        flags: Copy of the interaction flags.
        is_optimistic: The drawn record is an unconfirmed update.
        can_edit: The current user may drag this tile.
        show_spinner: Loading, or expanded with children not yet cached.
        pending_children: Keys of children of an expanded tile not yet READY.
    """

    key: str
    test_id: str
    visual_status: VisualStatus
    flags: InteractionState
    is_optimistic: bool = False
    can_edit: bool = False
    show_spinner: bool = False
    pending_children: tuple[str, ...] = field(default_factory=tuple)
