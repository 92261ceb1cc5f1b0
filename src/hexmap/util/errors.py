"""Error taxonomy for the tile map core.

Every exception carries an :class:`ErrorKind` so that failures absorbed into
cache or drag state can be recorded without keeping the exception object.

Only :class:`CoordError` subclasses are meant to propagate to callers; they
indicate a programming defect (a malformed key or an out-of-range direction).
Fetch and move failures are caught at the component boundary and turned into
``ERROR`` cache entries or rejected drop results.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure recorded in cache entries and drop results."""

    MALFORMED_KEY = "malformed_key"
    INVALID_DIRECTION = "invalid_direction"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"
    PERMISSION_DENIED = "permission_denied"
    INVALID_MOVE = "invalid_move"
    CONFLICT = "conflict"
    MUTATION_REJECTED = "mutation_rejected"


class HexMapError(Exception):
    """Base class for all tile map errors."""

    kind: ErrorKind = ErrorKind.MUTATION_REJECTED


# -- Coordinate misuse ---------------------------------------------------

class CoordError(HexMapError, ValueError):
    """A coordinate was built or parsed from invalid input."""


class MalformedKey(CoordError):
    kind = ErrorKind.MALFORMED_KEY


class InvalidDirection(CoordError):
    kind = ErrorKind.INVALID_DIRECTION


# -- Fetch failures ------------------------------------------------------

class FetchError(HexMapError):
    """A tile could not be fetched from the persistence layer."""

    kind = ErrorKind.TRANSPORT_ERROR


class NotFound(FetchError):
    kind = ErrorKind.NOT_FOUND


class TransportError(FetchError):
    kind = ErrorKind.TRANSPORT_ERROR


# -- Move failures -------------------------------------------------------

class MoveError(HexMapError):
    """A move was refused locally or by the persistence layer."""

    kind = ErrorKind.MUTATION_REJECTED


class PermissionDenied(MoveError):
    kind = ErrorKind.PERMISSION_DENIED


class InvalidMove(MoveError):
    kind = ErrorKind.INVALID_MOVE


class Conflict(MoveError):
    kind = ErrorKind.CONFLICT


class MutationRejected(MoveError):
    kind = ErrorKind.MUTATION_REJECTED


def error_kind(exc: BaseException) -> ErrorKind:
    """Map any exception to the kind recorded for it.

    Unknown exceptions count as transport errors when raised by a fetch;
    callers that handle moves pass those through :func:`move_error_kind`.
    """
    if isinstance(exc, HexMapError):
        return exc.kind
    return ErrorKind.TRANSPORT_ERROR


def move_error_kind(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a move to the kind surfaced to the caller."""
    if isinstance(exc, MoveError):
        return exc.kind
    return ErrorKind.MUTATION_REJECTED
