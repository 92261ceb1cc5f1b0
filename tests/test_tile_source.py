"""Tests for the in-memory tile source and the tile payload contract."""

import pytest
from pydantic import ValidationError

from hexmap.models.contracts import TilePayload, parse_tile
from hexmap.models.coord import Coord
from hexmap.models.tile import TileRecord
from hexmap.persistence.tile_source import InMemoryTileSource, StaticSession
from hexmap.util.errors import (
    Conflict, InvalidMove, MalformedKey, NotFound, PermissionDenied, TransportError,
)

ROOT = Coord(2, 0)
A = Coord(2, 0, (1,))
A3 = Coord(2, 0, (1, 3))
B = Coord(2, 0, (4,))


def _source(**kwargs):
    return InMemoryTileSource([
        TileRecord(coord=ROOT, owner_id="2"),
        TileRecord(coord=A, owner_id="2", content="a"),
        TileRecord(coord=A3, owner_id="2", content="a3"),
        TileRecord(coord=B, owner_id="2", content="b"),
    ], **kwargs)


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_existing(self):
        source = _source()
        record = await source.fetch_tile(A)
        assert record.content == "a"
        assert record.has_children is True
        assert source.fetch_calls == [A]

    @pytest.mark.asyncio
    async def test_leaf_has_no_children(self):
        record = await _source().fetch_tile(B)
        assert record.has_children is False

    @pytest.mark.asyncio
    async def test_fetch_missing(self):
        with pytest.raises(NotFound):
            await _source().fetch_tile(Coord(2, 0, (0,)))

    @pytest.mark.asyncio
    async def test_offline(self):
        source = _source()
        source.offline = True
        with pytest.raises(TransportError):
            await source.fetch_tile(A)


class TestMove:
    @pytest.mark.asyncio
    async def test_move_rekeys_subtree(self):
        source = _source()
        target = Coord(2, 0, (5,))
        await source.move_tile(A, target)
        assert source.get(A) is None
        assert source.get(A3) is None
        assert source.get(target).content == "a"
        assert source.get(Coord(2, 0, (5, 3))).coord == Coord(2, 0, (5, 3))

    @pytest.mark.asyncio
    async def test_move_onto_occupied_slot_swaps(self):
        source = _source()
        await source.move_tile(A, B)
        assert source.get(B).content == "a"
        assert source.get(Coord(2, 0, (4, 3))).content == "a3"
        assert source.get(A).content == "b"
        assert source.get(A3) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", [A, A3, ROOT, Coord(3, 0, (1,))])
    async def test_invalid_moves(self, target):
        source = _source()
        with pytest.raises(InvalidMove):
            await source.move_tile(A, target)
        assert source.get(A).content == "a"

    @pytest.mark.asyncio
    async def test_move_into_ancestor_rejected(self):
        with pytest.raises(InvalidMove):
            await _source().move_tile(A3, A)

    @pytest.mark.asyncio
    async def test_missing_target_parent_conflicts(self):
        with pytest.raises(Conflict):
            await _source().move_tile(A, Coord(2, 0, (0, 2)))

    @pytest.mark.asyncio
    async def test_missing_source(self):
        with pytest.raises(NotFound):
            await _source().move_tile(Coord(2, 0, (0,)), Coord(2, 0, (5,)))

    @pytest.mark.asyncio
    async def test_acting_user_must_own_tile(self):
        source = _source(acting_user=StaticSession(3))
        with pytest.raises(PermissionDenied):
            await source.move_tile(A, Coord(2, 0, (5,)))
        owner = _source(acting_user=StaticSession(2))
        await owner.move_tile(A, Coord(2, 0, (5,)))


class TestTilePayload:
    def test_to_record(self):
        payload = TilePayload(coordinates="2-0-13", owner_id=2, content={"name": "x"})
        record = payload.to_record(fetched_at=4.0)
        assert record.coord == A3
        assert record.owner_id == "2"
        assert record.content == {"name": "x"}
        assert record.fetched_at == 4.0

    def test_malformed_coordinates(self):
        with pytest.raises(ValidationError):
            TilePayload(coordinates="2-0-9", owner_id="2")

    def test_missing_owner(self):
        with pytest.raises(ValidationError):
            TilePayload.model_validate({"coordinates": "2-0"})

    def test_parse_tile_accepts_all_shapes(self):
        record = TileRecord(coord=A, owner_id="2")
        assert parse_tile(record, A) is record
        assert parse_tile(TilePayload(coordinates="2-0-1", owner_id="2"), A).coord == A
        assert parse_tile({"coordinates": "2-0-1", "owner_id": "2"}, A).coord == A

    def test_parse_tile_rejects_other_coordinate(self):
        with pytest.raises(ValueError):
            parse_tile({"coordinates": "2-0-4", "owner_id": "2"}, A)

    def test_malformed_key_error_is_value_error(self):
        assert issubclass(MalformedKey, ValueError)
