"""Tile records and cache entries.

A TileRecord is the fetched data of one tile. A CacheEntry tracks the fetch
status of one coordinate and holds the record once it is available.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from hexmap.models.coord import Coord
from hexmap.util.errors import ErrorKind


class CacheStatus(Enum):
    """Fetch lifecycle of a cache entry."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class TileRecord:
    """Data of one tile as returned by the persistence layer.

    Attributes:
        coord: Address of the tile.
        owner_id: Id of the owning user, as a string.
        content: Opaque payload (name, description, ...), never inspected here.
        has_children: Whether the tile can be expanded.
        fetched_at: Store clock time of the fetch that produced the record.
    """

    coord: Coord
    owner_id: str
    content: Any = None
    has_children: bool = False
    fetched_at: float = 0.0

    def moved_to(self, coord: Coord) -> TileRecord:
        """Copy of this record re-keyed to ``coord``."""
        return replace(self, coord=coord)


@dataclass(frozen=True)
class CacheEntry:
    """Cache state of one coordinate.

    Attributes:
        status: Where the entry is in its fetch lifecycle.
        record: Tile data; kept while refetching and after a failed refetch.
        error: Kind of the last failure when status is ERROR.
        optimistic: The record holds a speculative, unconfirmed update.
        change_id: Optimistic change that produced the record.
    """

    status: CacheStatus = CacheStatus.IDLE
    record: Optional[TileRecord] = None
    error: Optional[ErrorKind] = None
    optimistic: bool = False
    change_id: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status is CacheStatus.READY and self.record is not None


IDLE_ENTRY = CacheEntry()
