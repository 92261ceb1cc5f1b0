"""Tile source — the boundary to the persistence layer.

The core consumes three operations from outside:
- fetch_tile(coord): load one tile (raises NotFound / TransportError)
- move_tile(source, target): move or swap a subtree
  (raises PermissionDenied / InvalidMove / Conflict)
- current_user_id(): the signed-in user, or None

TileSource and SessionSource describe them as protocols. InMemoryTileSource
and StaticSession are small complete implementations used to run a map
without a server (demos, tests, offline mode).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Optional, Protocol

from hexmap.models.contracts import FetchResult
from hexmap.models.coord import Coord
from hexmap.models.tile import TileRecord
from hexmap.util import coord_codec
from hexmap.util.errors import Conflict, InvalidMove, NotFound, PermissionDenied, TransportError

log = logging.getLogger(__name__)


class TileSource(Protocol):
    async def fetch_tile(self, coord: Coord) -> FetchResult: ...

    async def move_tile(self, source: Coord, target: Coord) -> None: ...


class SessionSource(Protocol):
    def current_user_id(self) -> Optional[int]: ...


class StaticSession:
    """Session whose user is set explicitly (None when signed out)."""

    def __init__(self, user_id: Optional[int] = None) -> None:
        self.user_id = user_id

    def current_user_id(self) -> Optional[int]:
        return self.user_id


class InMemoryTileSource:
    """Tile source backed by a dict of records.

    Moves follow the server rules: the whole subtree of the source is
    re-keyed under the target; if the target slot is occupied the two
    subtrees swap places.

    Args:
        records: Initial tiles.
        latency: Seconds to sleep in every call, to exercise interleavings.
        acting_user: Optional session; when given, moves of tiles the user
            does not own raise PermissionDenied.
    """

    def __init__(self, records: Iterable[TileRecord] = (), latency: float = 0.0,
                 acting_user: SessionSource | None = None) -> None:
        self._records: dict[Coord, TileRecord] = {r.coord: r for r in records}
        self._latency = latency
        self._session = acting_user
        self.fetch_calls: list[Coord] = []
        self.move_calls: list[tuple[Coord, Coord]] = []
        self.offline = False

    # -- Data access -----------------------------------------------------

    def add(self, record: TileRecord) -> None:
        self._records[record.coord] = record

    def get(self, coord: Coord) -> Optional[TileRecord]:
        return self._records.get(coord)

    def coords(self) -> list[Coord]:
        return sorted(self._records, key=coord_codec.encode)

    # -- TileSource ------------------------------------------------------

    async def fetch_tile(self, coord: Coord) -> TileRecord:
        self.fetch_calls.append(coord)
        await self._wait()
        record = self._records.get(coord)
        if record is None:
            raise NotFound(f"no tile at {coord_codec.encode(coord)}")
        return replace(record, has_children=self._has_children(coord))

    async def move_tile(self, source: Coord, target: Coord) -> None:
        self.move_calls.append((source, target))
        await self._wait()
        moving = self._records.get(source)
        if moving is None:
            raise NotFound(f"no tile at {coord_codec.encode(source)}")
        self._check_move(source, target)
        if self._session is not None:
            user = self._session.current_user_id()
            if user is None or str(user) != moving.owner_id:
                raise PermissionDenied(f"user {user} cannot move {coord_codec.encode(source)}")

        source_tree = self._take_subtree(source)
        target_tree = self._take_subtree(target)
        for coord, record in source_tree.items():
            new = coord_codec.rebase(coord, source, target)
            self._records[new] = record.moved_to(new)
        for coord, record in target_tree.items():
            new = coord_codec.rebase(coord, target, source)
            self._records[new] = record.moved_to(new)
        log.info("Moved %s -> %s (%d tiles%s)", coord_codec.encode(source),
                 coord_codec.encode(target), len(source_tree),
                 ", swapped" if target_tree else "")

    # -- Internal --------------------------------------------------------

    def _check_move(self, source: Coord, target: Coord) -> None:
        if source == target:
            raise InvalidMove("source and target are the same tile")
        if source.is_root or target.is_root:
            raise InvalidMove("root tiles cannot be moved")
        if source.map_id != target.map_id:
            raise InvalidMove("tiles cannot be moved across maps")
        if (coord_codec.is_descendant_of(target, source)
                or coord_codec.is_descendant_of(source, target)):
            raise InvalidMove("cannot move a tile into its own subtree")
        if coord_codec.parent(target) not in self._records:
            raise Conflict(f"target parent of {coord_codec.encode(target)} does not exist")

    def _has_children(self, coord: Coord) -> bool:
        return any(c in self._records for c in coord_codec.children(coord))

    def _take_subtree(self, base: Coord) -> dict[Coord, TileRecord]:
        taken = {}
        for coord in list(self._records):
            if coord == base or coord_codec.is_descendant_of(coord, base):
                taken[coord] = self._records.pop(coord)
        return taken

    async def _wait(self) -> None:
        if self.offline:
            raise TransportError("tile source is offline")
        if self._latency:
            await asyncio.sleep(self._latency)
        else:
            await asyncio.sleep(0)
