"""Typed event bus — decoupled notification of the render layer.

The cache, interaction tracker and drag coordinator publish what changed;
the renderer (or anything else) subscribes per event type.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar, Type

from hexmap.util.errors import ErrorKind

log = logging.getLogger(__name__)

T = TypeVar("T")


# -- Cache events --------------------------------------------------------

@dataclass(frozen=True)
class TileFetched:
    """A fetch completed and the entry is READY."""
    key: str


@dataclass(frozen=True)
class TileFetchFailed:
    """A fetch completed with an error."""
    key: str
    error: ErrorKind


@dataclass(frozen=True)
class TilesInvalidated:
    """Entries were reset to IDLE and need a refetch."""
    keys: tuple[str, ...]


# -- Interaction events --------------------------------------------------

@dataclass(frozen=True)
class InteractionChanged:
    """An interaction flag of a tile changed."""
    key: str
    flag: str
    value: bool


# -- Drag events ---------------------------------------------------------

@dataclass(frozen=True)
class DragStarted:
    """A drag session was created."""
    source_key: str


@dataclass(frozen=True)
class DragCancelled:
    """A drag session ended without a drop."""
    source_key: str


@dataclass(frozen=True)
class MoveCommitted:
    """The persistence layer confirmed a move (or swap)."""
    source_key: str
    target_key: str
    operation: str  # "move" or "swap"


@dataclass(frozen=True)
class MoveRejected:
    """A drop was refused or rolled back."""
    source_key: Optional[str]
    target_key: Optional[str]
    error: ErrorKind
    cause: Optional[ErrorKind] = None


# -- Sync events ---------------------------------------------------------

@dataclass(frozen=True)
class SyncStarted:
    """A background refresh pass began."""
    stale: int


@dataclass(frozen=True)
class SyncCompleted:
    """A refresh pass finished; counts of refetched tiles by outcome."""
    refreshed: int
    failed: int


@dataclass(frozen=True)
class SyncFailed:
    """A refresh pass could not run or was aborted."""
    reason: str


@dataclass(frozen=True)
class OnlineStatusChanged:
    is_online: bool


# -- Event Bus -----------------------------------------------------------

class EventBus:
    """Synchronous event bus with typed events.

    A handler that raises is logged and counted in ``handler_errors``; the
    remaining handlers still run and emit() returns normally.

    Usage:
        bus = EventBus()
        bus.on(TileFetched, lambda e: print(e.key))
        bus.once(MoveCommitted, lambda e: print("first move", e.target_key))
        bus.emit(TileFetched(key="1-0"))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)
        self.handler_errors: int = 0

    def on(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Register a handler for an event type."""
        self._handlers[event_type].append(handler)

    def once(self, event_type: Type[T], handler: Callable[[T], None]) -> Callable[[T], None]:
        """Register a handler that is removed before its first call.

        Returns:
            The registered wrapper, which can be passed to off() to drop the
            subscription before it fires.
        """
        def wrapper(event: T) -> None:
            self.off(event_type, wrapper)
            handler(event)

        self.on(event_type, wrapper)
        return wrapper

    def off(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Unregister a handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: object) -> None:
        """Emit an event to all registered handlers."""
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                self.handler_errors += 1
                log.exception("Handler %r failed on %s", handler, type(event).__name__)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
