"""Background sync model — state of the periodic refresh of visible tiles."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SyncPhase(Enum):
    """Lifecycle of a sync engine."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class SyncStatus:
    """Snapshot of a sync engine's bookkeeping.

    Attributes:
        phase: Whether the periodic loop runs.
        is_online: Passes are skipped while False.
        is_syncing: A pass is in progress.
        last_sync_at: Clock time the last successful pass finished.
        next_sync_at: Clock time the next scheduled pass is due.
        sync_count: Successful passes.
        error_count: Passes that failed or were refused while offline.
        last_error: Reason of the most recent failure.
    """

    phase: SyncPhase = SyncPhase.STOPPED
    is_online: bool = True
    is_syncing: bool = False
    last_sync_at: Optional[float] = None
    next_sync_at: Optional[float] = None
    sync_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one refresh pass."""

    ok: bool
    refreshed: int = 0
    failed: int = 0
    duration: float = 0.0
    error: Optional[str] = None
