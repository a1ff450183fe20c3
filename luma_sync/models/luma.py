"""Data models for records returned by the Luma public API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


def _text(value: Any) -> str:
    """Coerce optional API scalars to sheet-friendly text."""
    if value is None:
        return ""
    return str(value)


@dataclass
class Page(Generic[T]):
    """
    One page of a cursor-paginated listing.

    Attributes:
        items: Records on this page
        next_cursor: Cursor for the following page, if any
        has_more: False marks the end of the walk
    """

    items: list[T] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


@dataclass
class LumaEvent:
    """
    A calendar event.

    Attributes:
        api_id: Stable event identifier (evt-...)
        calendar_api_id: Calendar the event belongs to
        name: Event title
        geo_address: Flattened address from geo_address_json
    """

    api_id: str
    calendar_api_id: str = ""
    name: str = ""
    description: str = ""
    description_md: str = ""
    cover_url: str = ""
    start_at: str = ""
    end_at: str = ""
    timezone: str = ""
    duration_interval: str = ""
    meeting_url: str = ""
    url: str = ""
    user_api_id: str = ""
    visibility: str = ""
    zoom_meeting_url: str = ""
    geo_address: str = ""
    geo_address_json: Optional[dict[str, Any]] = None
    geo_latitude: str = ""
    geo_longitude: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: dict, calendar_api_id: str = "") -> "LumaEvent":
        """Create from the ``event`` object of an API entry."""
        geo = data.get("geo_address_json") or None
        return cls(
            api_id=data["api_id"],
            calendar_api_id=_text(data.get("calendar_api_id") or calendar_api_id),
            name=_text(data.get("name")),
            description=_text(data.get("description")),
            description_md=_text(data.get("description_md")),
            cover_url=_text(data.get("cover_url")),
            start_at=_text(data.get("start_at")),
            end_at=_text(data.get("end_at")),
            timezone=_text(data.get("timezone")),
            duration_interval=_text(data.get("duration_interval")),
            meeting_url=_text(data.get("meeting_url")),
            url=_text(data.get("url")),
            user_api_id=_text(data.get("user_api_id")),
            visibility=_text(data.get("visibility")),
            zoom_meeting_url=_text(data.get("zoom_meeting_url")),
            geo_address=_text(geo.get("address")) if geo else "",
            geo_address_json=geo,
            geo_latitude=_text(data.get("geo_latitude")),
            geo_longitude=_text(data.get("geo_longitude")),
            created_at=_text(data.get("created_at")),
            updated_at=_text(data.get("updated_at")),
        )

    @classmethod
    def from_entry(cls, entry: dict) -> "LumaEvent":
        """Create from a list-events entry (``{"api_id", "event", "tags"}``)."""
        return cls.from_dict(entry["event"], calendar_api_id=entry.get("api_id", ""))


@dataclass
class LumaGuest:
    """A guest registered for an event."""

    api_id: str
    event_api_id: str
    user_api_id: str = ""
    user_name: str = ""
    user_email: str = ""
    user_first_name: str = ""
    user_last_name: str = ""
    approval_status: str = ""
    checked_in_at: str = ""
    check_in_qr_code: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_entry(cls, entry: dict, event_api_id: str) -> "LumaGuest":
        """
        Create from a get-guests entry.

        The guest id lives on the nested guest object, with the entry id as a
        fallback. Guests are stamped with the event they were listed under.
        """
        data = entry.get("guest") or entry
        api_id = data.get("api_id") or entry.get("api_id")
        if not api_id:
            raise KeyError("api_id")
        return cls(
            api_id=api_id,
            event_api_id=event_api_id,
            user_api_id=_text(data.get("user_api_id")),
            user_name=_text(data.get("user_name")),
            user_email=_text(data.get("user_email")),
            user_first_name=_text(data.get("user_first_name")),
            user_last_name=_text(data.get("user_last_name")),
            approval_status=_text(data.get("approval_status")),
            checked_in_at=_text(data.get("checked_in_at")),
            check_in_qr_code=_text(data.get("check_in_qr_code")),
            created_at=_text(data.get("created_at")),
            updated_at=_text(data.get("updated_at")),
        )


@dataclass
class LumaHost:
    """A host of an event."""

    api_id: str
    name: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "LumaHost":
        return cls(
            api_id=data["api_id"],
            name=_text(data.get("name")),
            email=_text(data.get("email")),
            first_name=_text(data.get("first_name")),
            last_name=_text(data.get("last_name")),
            avatar_url=_text(data.get("avatar_url")),
        )


@dataclass
class EventDetail:
    """An event together with its hosts."""

    event: LumaEvent
    hosts: list[LumaHost] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "EventDetail":
        return cls(
            event=LumaEvent.from_dict(data["event"]),
            hosts=[LumaHost.from_dict(h) for h in data.get("hosts") or []],
        )
