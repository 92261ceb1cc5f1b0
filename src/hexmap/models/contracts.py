"""Tile payload contract.

Typed Pydantic model for the raw tile data handed over by the persistence
layer, validated before it is turned into a TileRecord.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, field_validator

from hexmap.models.coord import Coord
from hexmap.models.tile import TileRecord
from hexmap.util import coord_codec


class TilePayload(BaseModel):
    """One tile as delivered by ``fetch_tile``."""

    coordinates: str
    owner_id: str
    content: Any = None
    has_children: bool = False

    @field_validator("coordinates")
    @classmethod
    def _valid_key(cls, value: str) -> str:
        coord_codec.decode(value)
        return value

    @field_validator("owner_id", mode="before")
    @classmethod
    def _owner_as_string(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def to_record(self, fetched_at: float = 0.0) -> TileRecord:
        return TileRecord(
            coord=coord_codec.decode(self.coordinates),
            owner_id=self.owner_id,
            content=self.content,
            has_children=self.has_children,
            fetched_at=fetched_at,
        )


FetchResult = Union[TileRecord, TilePayload, dict]


def parse_tile(raw: FetchResult, expected: Coord) -> TileRecord:
    """Convert whatever a tile source returned into a TileRecord.

    Raises:
        pydantic.ValidationError: If a dict payload is malformed.
        ValueError: If the payload belongs to a different coordinate.
    """
    if isinstance(raw, TileRecord):
        record = raw
    else:
        payload = raw if isinstance(raw, TilePayload) else TilePayload.model_validate(raw)
        record = payload.to_record()
    if record.coord != expected:
        raise ValueError(
            f"fetched tile {coord_codec.encode(record.coord)} "
            f"does not match {coord_codec.encode(expected)}"
        )
    return record
