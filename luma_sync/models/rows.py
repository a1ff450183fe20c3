"""Row schemas for the tabular destinations.

Each destination has a fixed, ordered list of named columns. Rows travel
through the state machine as dicts keyed by column key so that the persisted
buffer is self-describing; they are turned into ordered cell lists only at
the sink boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from luma_sync.errors import SchemaError
from luma_sync.models.luma import LumaEvent, LumaGuest, LumaHost

Row = dict[str, Any]


@dataclass(frozen=True)
class Column:
    """A named, typed column."""

    key: str
    header: str
    type: type = str


@dataclass(frozen=True)
class RowSchema:
    """Ordered columns for one destination."""

    name: str
    columns: tuple[Column, ...]
    id_column: str = "api_id"

    @property
    def headers(self) -> list[str]:
        return [c.header for c in self.columns]

    @property
    def keys(self) -> list[str]:
        return [c.key for c in self.columns]

    @property
    def width(self) -> int:
        return len(self.columns)

    def validate(self, row: Row) -> None:
        """
        Check a row against the schema.

        Raises:
            SchemaError: On missing or unknown keys, or a mistyped value
        """
        expected = set(self.keys)
        actual = set(row)
        if actual != expected:
            missing = sorted(expected - actual)
            unknown = sorted(actual - expected)
            raise SchemaError(
                f"{self.name} row does not match schema "
                f"(missing={missing}, unknown={unknown})"
            )
        for column in self.columns:
            value = row[column.key]
            if not isinstance(value, column.type):
                raise SchemaError(
                    f"{self.name}.{column.key} expected {column.type.__name__}, "
                    f"got {type(value).__name__}"
                )

    def to_values(self, row: Row) -> list[Any]:
        """Ordered cell values for a validated row."""
        self.validate(row)
        return [row[key] for key in self.keys]

    def row_id(self, row: Row) -> str:
        return row[self.id_column]


EVENTS = RowSchema(
    name="events",
    columns=(
        Column("api_id", "API ID"),
        Column("calendar_api_id", "Calendar API ID"),
        Column("name", "Name"),
        Column("description", "Description"),
        Column("description_md", "Description MD"),
        Column("cover_url", "Cover URL"),
        Column("start_at", "Start At"),
        Column("end_at", "End At"),
        Column("timezone", "Timezone"),
        Column("duration_interval", "Duration Interval"),
        Column("meeting_url", "Meeting URL"),
        Column("url", "URL"),
        Column("user_api_id", "User API ID"),
        Column("visibility", "Visibility"),
        Column("zoom_meeting_url", "Zoom Meeting URL"),
        Column("geo_address", "Geo Address"),
        Column("geo_latitude", "Geo Latitude"),
        Column("geo_longitude", "Geo Longitude"),
        Column("created_at", "Created At"),
        Column("updated_at", "Updated At"),
    ),
)

GUESTS = RowSchema(
    name="guests",
    columns=(
        Column("api_id", "API ID"),
        Column("event_api_id", "Event API ID"),
        Column("user_name", "User Name"),
        Column("user_email", "User Email"),
        Column("user_first_name", "User First Name"),
        Column("user_last_name", "User Last Name"),
        Column("approval_status", "Approval Status"),
        Column("checked_in_at", "Checked In At"),
        Column("check_in_qr_code", "Check In QR Code"),
        Column("created_at", "Created At"),
        Column("updated_at", "Updated At"),
    ),
)

HOSTS = RowSchema(
    name="hosts",
    columns=(
        Column("api_id", "API ID"),
        Column("event_api_id", "Event API ID"),
        Column("event_name", "Event Name"),
        Column("name", "Name"),
        Column("email", "Email"),
        Column("first_name", "First Name"),
        Column("last_name", "Last Name"),
        Column("avatar_url", "Avatar URL"),
        Column("created_at", "Created At"),
        Column("updated_at", "Updated At"),
    ),
)


def _project(record: Any, schema: RowSchema) -> Row:
    available = {f.name for f in fields(record)}
    return {key: getattr(record, key) if key in available else "" for key in schema.keys}


def event_row(event: LumaEvent) -> Row:
    return _project(event, EVENTS)


def guest_row(guest: LumaGuest) -> Row:
    return _project(guest, GUESTS)


def host_row(host: LumaHost, event: LumaEvent) -> Row:
    """Hosts carry no timestamps of their own; the event's are used."""
    row = _project(host, HOSTS)
    row["event_api_id"] = event.api_id
    row["event_name"] = event.name
    row["created_at"] = event.created_at
    row["updated_at"] = event.updated_at
    return row
