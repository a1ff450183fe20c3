"""Resumable sync state machine and its driver."""

from luma_sync.processor.machine import SyncMachine, TickAction, TickResult
from luma_sync.processor.progress import SyncStatus, compute_status
from luma_sync.processor.runner import RunSummary, SyncRunner
from luma_sync.processor.states import (
    TRANSITIONS,
    GuestCursor,
    ListingFilter,
    SyncStage,
    SyncState,
)
from luma_sync.processor.store import StateStore

__all__ = [
    "GuestCursor",
    "ListingFilter",
    "RunSummary",
    "StateStore",
    "SyncMachine",
    "SyncRunner",
    "SyncStage",
    "SyncState",
    "SyncStatus",
    "TRANSITIONS",
    "TickAction",
    "TickResult",
    "compute_status",
]
