"""Hierarchical tile coordinates.

A tile is addressed by the map it belongs to and the path of child
directions taken from that map's root tile:

- user_id / group_id identify the map (owner and group)
- path is the sequence of directions (0..5) from the root to the tile
- len(path) is the nesting depth; the empty path is the root tile

There is no parent pointer anywhere: ancestry is computed from the path.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from hexmap.util.constants import DIRECTION_COUNT
from hexmap.util.errors import InvalidDirection, MalformedKey


class Direction(IntEnum):
    """The six child positions around a parent tile."""

    NORTH_WEST = 0
    NORTH_EAST = 1
    EAST = 2
    SOUTH_EAST = 3
    SOUTH_WEST = 4
    WEST = 5

    @property
    def opposite(self) -> Direction:
        return Direction((self + DIRECTION_COUNT // 2) % DIRECTION_COUNT)


def check_direction(direction: object) -> int:
    """Return ``direction`` as a plain int or raise InvalidDirection."""
    if isinstance(direction, bool) or not isinstance(direction, int):
        raise InvalidDirection(f"direction must be an int in 0..5, got {direction!r}")
    if not 0 <= direction < DIRECTION_COUNT:
        raise InvalidDirection(f"direction out of range 0..5: {direction}")
    return int(direction)


@dataclass(frozen=True)
class Coord:
    """Immutable tile address.

    Attributes:
        user_id: Owner part of the map identity.
        group_id: Group part of the map identity.
        path: Directions from the map root to this tile.
    """

    user_id: int
    group_id: int = 0
    path: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        for name in ("user_id", "group_id"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MalformedKey(f"{name} must be a non-negative int, got {value!r}")
        object.__setattr__(self, "path", tuple(check_direction(d) for d in self.path))

    # -- Shape -----------------------------------------------------------

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def is_root(self) -> bool:
        return not self.path

    @property
    def map_id(self) -> tuple[int, int]:
        """(user_id, group_id): the map this tile lives on."""
        return (self.user_id, self.group_id)

    def __repr__(self) -> str:
        digits = "".join(str(d) for d in self.path)
        return f"Coord({self.user_id},{self.group_id}:{digits})"
