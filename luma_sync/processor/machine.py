"""Resumable state machine driving a sync run."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from luma_sync.client.luma import EventSource
from luma_sync.config.settings import SyncConfig, SyncSettings
from luma_sync.errors import SyncError
from luma_sync.models.rows import EVENTS, GUESTS, HOSTS, Row, event_row, guest_row, host_row
from luma_sync.processor.progress import SyncStatus, compute_status
from luma_sync.processor.states import GuestCursor, ListingFilter, SyncStage, SyncState
from luma_sync.processor.store import StateStore, utc_now
from luma_sync.sinks.base import RelationalSink
from luma_sync.sinks.database import (
    EVENTS_CONFLICT_KEY,
    EVENTS_TABLE,
    GUESTS_CONFLICT_KEY,
    GUESTS_TABLE,
    HOSTS_CONFLICT_KEY,
    HOSTS_TABLE,
    event_record,
    guest_record,
    host_record,
)
from luma_sync.sinks.writer import BatchSinkWriter, WriteMode, WriteReport
from luma_sync.utils.logging import get_logger, log_stage_timing, set_stage

logger = get_logger("processor.machine")

# Errors that fail a single event instead of the whole run
EVENT_ERRORS = (SyncError, httpx.HTTPError)


class TickAction(Enum):
    """What a single tick did."""

    IDLE = "idle"
    LISTED_EVENTS = "listed_events"
    WROTE_EVENTS = "wrote_events"
    FETCHED_GUESTS = "fetched_guests"
    EVENT_FAILED = "event_failed"
    FLUSHED = "flushed"
    COMPLETED = "completed"


@dataclass
class TickResult:
    """Outcome of one unit of work."""

    action: TickAction
    stage: SyncStage
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "stage": self.stage.value,
            "detail": self.detail,
        }


class SyncMachine:
    """
    Copies events and their guests from a source into the sinks.

    A run is started by ``queue_all_events`` and then advanced one bounded
    unit at a time by ``process_pending_events``. All progress, including
    rows fetched but not yet written, is persisted after every unit so a
    restarted process continues exactly where the last one stopped.

    Stages: events -> guests -> completed
    """

    def __init__(
        self,
        source: EventSource,
        writer: BatchSinkWriter,
        store: StateStore,
        config: Optional[SyncConfig] = None,
        database: Optional[RelationalSink] = None,
    ) -> None:
        """
        Initialize the machine.

        Args:
            source: Paginated event/guest reader
            writer: Batched writer over the tabular sink
            store: Persisted state
            config: Job configuration (defaults when omitted)
            database: Optional relational sink mirrored alongside the sheets
        """
        self.source = source
        self.writer = writer
        self.store = store
        self.config = config or SyncConfig()
        self.database = database

    @property
    def settings(self) -> SyncSettings:
        return self.config.sync

    # -- operations ---------------------------------------------------------

    async def queue_all_events(
        self,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> SyncState:
        """
        Start a new run: list every event, write them, enter the guest stage.

        Any previous run's progress is discarded. Listing progress is saved
        after each page; an error aborts the call and a later tick resumes
        the listing from the saved cursor.
        """
        started = time.monotonic()
        set_stage(SyncStage.EVENTS.value)

        state = SyncState(
            started_at=utc_now(),
            listing_filter=ListingFilter(after=after, before=before),
            has_more_source_pages=True,
        )
        self.store.save(state)
        logger.info("sync_started", after=after, before=before)

        pages = self.source.iter_event_pages(
            sort_column=self.settings.sort_column,
            sort_direction=self.settings.sort_direction,
            limit=self.settings.events_page_size,
            after=after,
            before=before,
        )
        async for page in pages:
            self._record_event_page(state, page.items, page.next_cursor, page.has_more)

        await self._write_events(state)
        log_stage_timing(SyncStage.EVENTS.value, time.monotonic() - started)
        return state

    async def process_pending_events(self) -> TickResult:
        """
        Perform one bounded unit of work.

        Raises:
            SinkWriteError: If a flush failed; the rows stay buffered
        """
        state = self.store.load()
        set_stage(state.current_stage.value)

        if state.current_stage is SyncStage.EVENTS:
            return await self._tick_events(state)
        if state.current_stage is SyncStage.GUESTS:
            return await self._tick_guests(state)
        return TickResult(TickAction.IDLE, state.current_stage)

    async def flush(self) -> Optional[WriteReport]:
        """Write the buffered guest rows now."""
        state = self.store.load()
        return await self._flush(state)

    def stop(self) -> SyncState:
        """Mark the run completed; buffered guests stay in the state file."""
        return self.store.stop()

    def reset(self) -> SyncState:
        return self.store.reset()

    def cleanup(self) -> SyncState:
        return self.store.clear()

    def get_status(self) -> SyncStatus:
        return compute_status(self.store.load())

    # -- events stage -------------------------------------------------------

    def _record_event_page(
        self,
        state: SyncState,
        events: list,
        next_cursor: Optional[str],
        has_more: bool,
    ) -> int:
        added = 0
        for event in events:
            if event.api_id in state.pending_event_ids:
                continue
            state.pending_event_ids.append(event.api_id)
            state.event_buffer.append(event_row(event))
            added += 1

        state.source_page_cursor = next_cursor
        state.has_more_source_pages = bool(has_more and next_cursor)
        self.store.save(state)

        logger.info(
            "events_page_listed",
            added=added,
            total=len(state.pending_event_ids),
            has_more=state.has_more_source_pages,
        )
        return added

    async def _tick_events(self, state: SyncState) -> TickResult:
        if state.has_more_source_pages:
            page = await self.source.list_events(
                sort_column=self.settings.sort_column,
                sort_direction=self.settings.sort_direction,
                cursor=state.source_page_cursor,
                limit=self.settings.events_page_size,
                after=state.listing_filter.after,
                before=state.listing_filter.before,
            )
            added = self._record_event_page(
                state, page.items, page.next_cursor, page.has_more,
            )
            if state.has_more_source_pages:
                return TickResult(
                    TickAction.LISTED_EVENTS,
                    state.current_stage,
                    {"added": added, "total": len(state.pending_event_ids)},
                )

        elif state.started_at is None:
            return TickResult(TickAction.IDLE, state.current_stage)

        report = await self._write_events(state)
        return TickResult(
            TickAction.WROTE_EVENTS,
            state.current_stage,
            {"rows_written": report.rows_written},
        )

    async def _write_events(self, state: SyncState) -> WriteReport:
        rows = state.event_buffer
        report = await self.writer.write(
            self.config.sheets.events_sheet,
            EVENTS,
            rows,
            WriteMode.OVERWRITE,
        )
        if self.database is not None:
            await self.database.upsert(
                EVENTS_TABLE,
                [event_record(row) for row in rows],
                EVENTS_CONFLICT_KEY,
            )

        state.event_buffer = []
        state.source_page_cursor = None
        state.has_more_source_pages = False
        state.transition_to(SyncStage.GUESTS)
        self.store.save(state)
        set_stage(state.current_stage.value)

        logger.info("events_written", events=len(state.pending_event_ids))
        return report

    # -- guests stage -------------------------------------------------------

    async def _tick_guests(self, state: SyncState) -> TickResult:
        threshold = self.settings.flush_threshold

        if len(state.guest_buffer) >= threshold:
            report = await self._flush(state)
            return TickResult(
                TickAction.FLUSHED,
                state.current_stage,
                {"rows_written": report.rows_written if report else 0},
            )

        if state.events_exhausted:
            report = await self._flush(state)
            state.transition_to(SyncStage.COMPLETED)
            state.current_event_guests_cursor = None
            self.store.save(state)
            set_stage(state.current_stage.value)
            logger.info(
                "sync_completed",
                events=len(state.pending_event_ids),
                failed_events=len(state.failed_event_ids),
                guests=len(state.flushed_guest_ids),
            )
            return TickResult(
                TickAction.COMPLETED,
                state.current_stage,
                {"rows_written": report.rows_written if report else 0},
            )

        event_id = state.current_event_id
        cursor = state.current_event_guests_cursor
        if cursor is None or cursor.event_id != event_id:
            cursor = GuestCursor(event_id=event_id)

        try:
            if self.settings.include_hosts and cursor.next_cursor is None:
                await self._sync_hosts(state, event_id)
            page = await self.source.list_guests(
                event_id,
                cursor=cursor.next_cursor,
                limit=self.settings.guests_page_size,
            )
        except EVENT_ERRORS as e:
            logger.error(
                "event_failed",
                event_id=event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            state.mark_failed(event_id)
            state.advance()
            self.store.save(state)
            return TickResult(
                TickAction.EVENT_FAILED,
                state.current_stage,
                {"event_id": event_id, "error": str(e)},
            )

        added = self._buffer_guests(state, page.items)
        cursor.processed_count += len(page.items)
        if page.has_more and page.next_cursor:
            cursor.next_cursor = page.next_cursor
            cursor.has_more = True
            state.current_event_guests_cursor = cursor
        else:
            state.advance()
            logger.info(
                "event_guests_done",
                event_id=event_id,
                guests=cursor.processed_count,
            )
        self.store.save(state)

        detail: dict[str, Any] = {"event_id": event_id, "added": added}
        if len(state.guest_buffer) >= threshold:
            report = await self._flush(state)
            detail["rows_written"] = report.rows_written if report else 0
        return TickResult(TickAction.FETCHED_GUESTS, state.current_stage, detail)

    def _buffer_guests(self, state: SyncState, guests: list) -> int:
        seen = state.buffered_ids() | state.flushed_guest_ids
        added = 0
        for guest in guests:
            if guest.api_id in seen:
                continue
            seen.add(guest.api_id)
            state.guest_buffer.append(guest_row(guest))
            added += 1
        return added

    async def _sync_hosts(self, state: SyncState, event_id: str) -> None:
        detail = await self.source.get_event(event_id)
        rows = [host_row(host, detail.event) for host in detail.hosts]
        if not rows:
            return

        mode = WriteMode.APPEND if state.hosts_sink_initialized else WriteMode.OVERWRITE
        await self.writer.write(self.config.sheets.hosts_sheet, HOSTS, rows, mode)
        if not state.hosts_sink_initialized:
            state.hosts_sink_initialized = True
            self.store.save(state)
        if self.database is not None:
            await self.database.upsert(
                HOSTS_TABLE,
                [host_record(row) for row in rows],
                HOSTS_CONFLICT_KEY,
            )
        logger.debug("hosts_synced", event_id=event_id, hosts=len(rows))

    async def _flush(self, state: SyncState) -> Optional[WriteReport]:
        if not state.guest_buffer:
            return None

        rows: list[Row] = state.guest_buffer
        state.guest_buffer = []
        self.store.save(state)

        mode = WriteMode.APPEND if state.sink_initialized else WriteMode.OVERWRITE
        try:
            if self.database is not None:
                await self.database.upsert(
                    GUESTS_TABLE,
                    [guest_record(row) for row in rows],
                    GUESTS_CONFLICT_KEY,
                )
            report = await self.writer.write(
                self.config.sheets.guests_sheet,
                GUESTS,
                rows,
                mode,
            )
        except Exception:
            ids = {row["api_id"] for row in rows}
            state.guest_buffer = rows + [
                row for row in state.guest_buffer if row["api_id"] not in ids
            ]
            self.store.save(state)
            logger.warning("flush_failed_rows_restored", rows=len(rows), mode=mode.value)
            raise

        state.sink_initialized = True
        state.flushed_guest_ids.update(row["api_id"] for row in rows)
        self.store.save(state)

        logger.info("guests_flushed", rows=report.rows_written, mode=mode.value)
        return report
