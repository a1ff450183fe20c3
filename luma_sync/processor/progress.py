"""Read-only progress view of the sync state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from luma_sync.processor.states import SyncStage, SyncState


@dataclass
class SyncStatus:
    """Progress snapshot for operators."""

    stage: str
    stage_label: str
    total_events: int
    processed_events: int
    failed_events: int
    buffered_guests: int
    progress_percent: float
    last_sync_time: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "stage_label": self.stage_label,
            "total_events": self.total_events,
            "processed_events": self.processed_events,
            "failed_events": self.failed_events,
            "buffered_guests": self.buffered_guests,
            "progress_percent": self.progress_percent,
            "last_sync_time": self.last_sync_time,
        }


def progress_percent(state: SyncState) -> float:
    """
    Share of queued events already processed.

    Zero while the listing is still running or when nothing is queued; 100
    once the run is completed.
    """
    if state.current_stage is SyncStage.COMPLETED:
        return 100.0
    total = len(state.pending_event_ids)
    if state.current_stage is SyncStage.EVENTS or total == 0:
        return 0.0
    return round(state.last_processed_index / total * 100, 1)


def stage_label(state: SyncState) -> str:
    if state.current_stage is SyncStage.EVENTS:
        return "Listing events"
    if state.current_stage is SyncStage.GUESTS:
        total = len(state.pending_event_ids)
        current = min(state.last_processed_index + 1, total)
        return f"Syncing guests {current}/{total}"
    return "Completed"


def compute_status(state: SyncState) -> SyncStatus:
    return SyncStatus(
        stage=state.current_stage.value,
        stage_label=stage_label(state),
        total_events=len(state.pending_event_ids),
        processed_events=state.last_processed_index,
        failed_events=len(state.failed_event_ids),
        buffered_guests=len(state.guest_buffer),
        progress_percent=progress_percent(state),
        last_sync_time=state.last_sync_time,
    )
