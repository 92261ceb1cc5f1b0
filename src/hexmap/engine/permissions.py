"""Permission gate — may the current user mutate a tile?

This is a UX gate deciding which tiles offer drag affordances; the
persistence layer enforces authorization on its own.
"""

from __future__ import annotations

from typing import Optional

from hexmap.models.tile import TileRecord


def can_edit(current_user_id: Optional[int], owner_id: str) -> bool:
    """True iff a user is signed in and owns the tile."""
    if current_user_id is None:
        return False
    return str(current_user_id) == owner_id


def can_edit_record(current_user_id: Optional[int], record: Optional[TileRecord]) -> bool:
    """Like can_edit(), False when the tile is not cached."""
    if record is None:
        return False
    return can_edit(current_user_id, record.owner_id)
