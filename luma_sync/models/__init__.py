"""Data models for luma-sync."""

from luma_sync.models.luma import (
    EventDetail,
    LumaEvent,
    LumaGuest,
    LumaHost,
    Page,
)
from luma_sync.models.rows import (
    EVENTS,
    GUESTS,
    HOSTS,
    Column,
    Row,
    RowSchema,
    event_row,
    guest_row,
    host_row,
)

__all__ = [
    # Source records
    "Page",
    "LumaEvent",
    "LumaGuest",
    "LumaHost",
    "EventDetail",
    # Row schemas
    "Column",
    "Row",
    "RowSchema",
    "EVENTS",
    "GUESTS",
    "HOSTS",
    "event_row",
    "guest_row",
    "host_row",
]
