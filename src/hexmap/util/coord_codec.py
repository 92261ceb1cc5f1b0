"""Coordinate codec — canonical keys and tree relations for tile coordinates.

All functions are pure and operate on :class:`Coord` values.

Key format: ``"{user_id}-{group_id}"`` for a root tile, followed by
``"-"`` and one digit per path segment for nested tiles, e.g. ``"1-2-053"``.
An ancestor's key is always a prefix of its descendants' keys, so a sorted
list of keys puts every ancestor before its subtree.
"""

from __future__ import annotations

from typing import Optional

from hexmap.models.coord import Coord, Direction, check_direction
from hexmap.util.constants import DIRECTION_COUNT, KEY_SEPARATOR, TEST_ID_PREFIX
from hexmap.util.errors import MalformedKey

_PATH_DIGITS = frozenset("012345")


def encode(coord: Coord) -> str:
    """Return the canonical string key of a coordinate."""
    base = f"{coord.user_id}{KEY_SEPARATOR}{coord.group_id}"
    if coord.is_root:
        return base
    return base + KEY_SEPARATOR + "".join(str(d) for d in coord.path)


def decode(key: str) -> Coord:
    """Parse a canonical key back into a coordinate.

    Raises:
        MalformedKey: If the prefix is not two non-negative integers in
            canonical form (no leading zeros) or the path part contains
            anything other than the digits 0-5.
    """
    if not isinstance(key, str):
        raise MalformedKey(f"key must be a string, got {type(key).__name__}")
    parts = key.split(KEY_SEPARATOR)
    if len(parts) not in (2, 3):
        raise MalformedKey(f"malformed coordinate key: {key!r}")

    user_part, group_part = parts[0], parts[1]
    if not (user_part.isdigit() and user_part.isascii()) or not (
        group_part.isdigit() and group_part.isascii()
    ):
        raise MalformedKey(f"malformed user/group prefix in key: {key!r}")
    if any(len(part) > 1 and part[0] == "0" for part in (user_part, group_part)):
        raise MalformedKey(f"non-canonical user/group prefix in key: {key!r}")

    path: tuple[int, ...] = ()
    if len(parts) == 3:
        digits = parts[2]
        if not digits or any(ch not in _PATH_DIGITS for ch in digits):
            raise MalformedKey(f"malformed path in key: {key!r}")
        path = tuple(int(ch) for ch in digits)

    return Coord(int(user_part), int(group_part), path)


def test_id(coord: Coord) -> str:
    """Stable UI-test identifier: ``tile-{user}-{group}[-{d}...]``."""
    parts = [TEST_ID_PREFIX, str(coord.user_id), str(coord.group_id)]
    parts.extend(str(d) for d in coord.path)
    return KEY_SEPARATOR.join(parts)


# -- Tree relations ------------------------------------------------------

def root(user_id: int, group_id: int = 0) -> Coord:
    """Return the root tile of a map."""
    return Coord(user_id, group_id)


def parent(coord: Coord) -> Optional[Coord]:
    """Return the parent coordinate, or None for a root tile."""
    if coord.is_root:
        return None
    return Coord(coord.user_id, coord.group_id, coord.path[:-1])


def child(coord: Coord, direction: int) -> Coord:
    """Return the child of ``coord`` in ``direction``.

    Raises:
        InvalidDirection: If direction is not an int in 0..5.
    """
    d = check_direction(direction)
    return Coord(coord.user_id, coord.group_id, coord.path + (d,))


def children(coord: Coord) -> list[Coord]:
    """Return the 6 child coordinates in direction order."""
    return [child(coord, d) for d in range(DIRECTION_COUNT)]


def siblings(coord: Coord) -> list[Coord]:
    """Return the 5 other children of this tile's parent (empty for a root)."""
    p = parent(coord)
    if p is None:
        return []
    return [c for c in children(p) if c != coord]


def depth(coord: Coord) -> int:
    return coord.depth


def is_root(coord: Coord) -> bool:
    return coord.is_root


def direction_of(coord: Coord) -> Optional[Direction]:
    """Direction of the last path segment, or None for a root."""
    if coord.is_root:
        return None
    return Direction(coord.path[-1])


def is_descendant_of(a: Coord, b: Coord) -> bool:
    """True iff ``a`` lies strictly below ``b`` on the same map."""
    if a.map_id != b.map_id:
        return False
    n = len(b.path)
    return len(a.path) > n and a.path[:n] == b.path


def is_adjacent(a: Coord, b: Coord) -> bool:
    """True iff ``a`` and ``b`` are siblings sharing an edge.

    Siblings share an edge when their last directions are opposite.
    """
    if a.is_root or b.is_root or a.depth != b.depth:
        return False
    if parent(a) != parent(b):
        return False
    return Direction(a.path[-1]).opposite == b.path[-1]


def rebase(coord: Coord, old_base: Coord, new_base: Coord) -> Coord:
    """Re-key ``coord`` from the subtree at ``old_base`` to ``new_base``.

    ``coord`` must be ``old_base`` itself or one of its descendants.
    """
    if coord != old_base and not is_descendant_of(coord, old_base):
        raise ValueError(f"{coord!r} is not within {old_base!r}")
    suffix = coord.path[len(old_base.path):]
    return Coord(new_base.user_id, new_base.group_id, new_base.path + suffix)
