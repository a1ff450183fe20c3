"""Persisted sync state and its stage transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from luma_sync.errors import StateCorruptedError, TransitionError
from luma_sync.models.rows import Row


class SyncStage(Enum):
    """Stages of a sync run."""

    EVENTS = "events"
    GUESTS = "guests"
    COMPLETED = "completed"

    def is_terminal(self) -> bool:
        return self is SyncStage.COMPLETED


# Forward-only; reset/cleanup/start rebuild the state instead of transitioning
TRANSITIONS: dict[SyncStage, set[SyncStage]] = {
    SyncStage.EVENTS: {SyncStage.GUESTS, SyncStage.COMPLETED},
    SyncStage.GUESTS: {SyncStage.COMPLETED},
    SyncStage.COMPLETED: set(),
}


@dataclass
class GuestCursor:
    """Position inside the guest listing of the event being processed."""

    event_id: str
    next_cursor: Optional[str] = None
    has_more: bool = True
    processed_count: int = 0

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
            "processed_count": self.processed_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GuestCursor:
        return cls(
            event_id=data["event_id"],
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more", True)),
            processed_count=int(data.get("processed_count", 0)),
        )


@dataclass
class ListingFilter:
    """Time window fixed for a whole event listing walk."""

    after: Optional[str] = None
    before: Optional[str] = None

    def to_dict(self) -> dict:
        return {"after": self.after, "before": self.before}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> ListingFilter:
        data = data or {}
        return cls(after=data.get("after"), before=data.get("before"))


@dataclass
class SyncState:
    """
    Everything needed to resume a sync run after a restart.

    Buffers live here rather than in memory so an interrupted process loses
    no fetched rows.
    """

    current_stage: SyncStage = SyncStage.EVENTS
    last_sync_time: Optional[str] = None
    started_at: Optional[str] = None

    pending_event_ids: list[str] = field(default_factory=list)
    last_processed_index: int = 0
    failed_event_ids: list[str] = field(default_factory=list)
    current_event_guests_cursor: Optional[GuestCursor] = None

    guest_buffer: list[Row] = field(default_factory=list)
    flushed_guest_ids: set[str] = field(default_factory=set)
    sink_initialized: bool = False
    hosts_sink_initialized: bool = False

    event_buffer: list[Row] = field(default_factory=list)
    source_page_cursor: Optional[str] = None
    has_more_source_pages: bool = False
    listing_filter: ListingFilter = field(default_factory=ListingFilter)

    @property
    def current_event_id(self) -> Optional[str]:
        if self.last_processed_index < len(self.pending_event_ids):
            return self.pending_event_ids[self.last_processed_index]
        return None

    @property
    def events_exhausted(self) -> bool:
        return self.last_processed_index >= len(self.pending_event_ids)

    def can_transition_to(self, new_stage: SyncStage) -> bool:
        return new_stage in TRANSITIONS.get(self.current_stage, set())

    def transition_to(self, new_stage: SyncStage) -> None:
        """
        Move to a later stage.

        Raises:
            TransitionError: If the move is not forward
        """
        if not self.can_transition_to(new_stage):
            raise TransitionError(self.current_stage.value, new_stage.value)
        self.current_stage = new_stage

    def stop(self) -> None:
        """Jump to the end of the run; buffered rows are kept."""
        if self.current_stage is not SyncStage.COMPLETED:
            self.transition_to(SyncStage.COMPLETED)
        self.last_processed_index = len(self.pending_event_ids)
        self.current_event_guests_cursor = None
        self.has_more_source_pages = False

    def mark_failed(self, event_id: str) -> None:
        if event_id not in self.failed_event_ids:
            self.failed_event_ids.append(event_id)

    def advance(self) -> None:
        """Finish the current event and move the cursor to the next one."""
        self.current_event_guests_cursor = None
        if self.last_processed_index < len(self.pending_event_ids):
            self.last_processed_index += 1

    def buffered_ids(self) -> set[str]:
        return {row["api_id"] for row in self.guest_buffer}

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        cursor = self.current_event_guests_cursor
        return {
            "last_sync_time": self.last_sync_time,
            "started_at": self.started_at,
            "current_stage": self.current_stage.value,
            "pending_event_ids": self.pending_event_ids,
            "last_processed_index": self.last_processed_index,
            "failed_event_ids": self.failed_event_ids,
            "current_event_guests_cursor": cursor.to_dict() if cursor else None,
            "guest_buffer": self.guest_buffer,
            "flushed_guest_ids": sorted(self.flushed_guest_ids),
            "sink_initialized": self.sink_initialized,
            "hosts_sink_initialized": self.hosts_sink_initialized,
            "event_buffer": self.event_buffer,
            "source_page_cursor": self.source_page_cursor,
            "has_more_source_pages": self.has_more_source_pages,
            "listing_filter": self.listing_filter.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> SyncState:
        """
        Create from dictionary.

        Raises:
            StateCorruptedError: On an unknown stage or malformed fields
        """
        if not isinstance(data, dict):
            raise StateCorruptedError("State must be a JSON object")

        try:
            stage = SyncStage(data.get("current_stage", SyncStage.EVENTS.value))
        except ValueError as e:
            raise StateCorruptedError(
                f"Unknown stage: {data.get('current_stage')!r}"
            ) from e

        try:
            cursor_data = data.get("current_event_guests_cursor")
            state = cls(
                current_stage=stage,
                last_sync_time=data.get("last_sync_time"),
                started_at=data.get("started_at"),
                pending_event_ids=list(data.get("pending_event_ids") or []),
                last_processed_index=int(data.get("last_processed_index", 0)),
                failed_event_ids=list(data.get("failed_event_ids") or []),
                current_event_guests_cursor=(
                    GuestCursor.from_dict(cursor_data) if cursor_data else None
                ),
                guest_buffer=[dict(row) for row in data.get("guest_buffer") or []],
                flushed_guest_ids=set(data.get("flushed_guest_ids") or []),
                sink_initialized=bool(data.get("sink_initialized", False)),
                hosts_sink_initialized=bool(data.get("hosts_sink_initialized", False)),
                event_buffer=[dict(row) for row in data.get("event_buffer") or []],
                source_page_cursor=data.get("source_page_cursor"),
                has_more_source_pages=bool(data.get("has_more_source_pages", False)),
                listing_filter=ListingFilter.from_dict(data.get("listing_filter")),
            )
        except (TypeError, ValueError, KeyError) as e:
            raise StateCorruptedError(f"Malformed state: {e}") from e

        if not 0 <= state.last_processed_index <= len(state.pending_event_ids):
            raise StateCorruptedError(
                f"last_processed_index {state.last_processed_index} out of range "
                f"for {len(state.pending_event_ids)} events"
            )

        return state
