"""Paginated reader for the Luma public API."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import AsyncIterator, Iterator, Optional

from luma_sync.client.http import HttpClient, RetryPolicy
from luma_sync.config.settings import SyncConfig
from luma_sync.errors import MalformedResponseError
from luma_sync.models.luma import EventDetail, LumaEvent, LumaGuest, Page
from luma_sync.utils.logging import get_logger

logger = get_logger("client.luma")

LIST_EVENTS_PATH = "/public/v1/calendar/list-events"
GET_GUESTS_PATH = "/public/v1/event/get-guests"
GET_EVENT_PATH = "/public/v1/event/get"

# Raised by the record parsers on missing or mistyped fields
PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


@contextmanager
def parsing(path: str) -> Iterator[None]:
    """Convert parse failures for a response from ``path`` into MalformedResponseError."""
    try:
        yield
    except PARSE_ERRORS as e:
        raise MalformedResponseError(
            f"Malformed response from {path}: {type(e).__name__}: {e}",
            path=path,
        ) from e


class EventSource(ABC):
    """
    Cursor-paginated source of events, guests and hosts.

    A cursor is only valid for the filter it was issued under: a resumed
    listing must pass the same ``after``/``before`` it started with.
    """

    @abstractmethod
    async def list_events(
        self,
        sort_column: str = "start_at",
        sort_direction: str = "desc",
        cursor: Optional[str] = None,
        limit: int = 50,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> Page[LumaEvent]:
        ...

    @abstractmethod
    async def list_guests(
        self,
        event_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Page[LumaGuest]:
        ...

    @abstractmethod
    async def get_event(self, event_id: str) -> EventDetail:
        ...

    async def iter_event_pages(
        self,
        sort_column: str = "start_at",
        sort_direction: str = "desc",
        cursor: Optional[str] = None,
        limit: int = 50,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> AsyncIterator[Page[LumaEvent]]:
        """
        Lazily walk the event listing from ``cursor`` (or the start).

        Pages are fetched only as the caller advances, so a caller can
        persist ``page.next_cursor`` after each page and resume there.
        """
        while True:
            page = await self.list_events(
                sort_column=sort_column,
                sort_direction=sort_direction,
                cursor=cursor,
                limit=limit,
                after=after,
                before=before,
            )
            yield page
            if not page.has_more or not page.next_cursor:
                return
            cursor = page.next_cursor

    async def iter_guest_pages(
        self,
        event_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> AsyncIterator[Page[LumaGuest]]:
        """Lazily walk one event's guest list from ``cursor``."""
        while True:
            page = await self.list_guests(event_id, cursor=cursor, limit=limit)
            yield page
            if not page.has_more or not page.next_cursor:
                return
            cursor = page.next_cursor


class LumaClient(EventSource):
    """Luma public API over the rate-limited HTTP client."""

    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    def create(cls, api_key: str, config: SyncConfig) -> "LumaClient":
        """Build a client with rate limits and retries from config."""
        http = HttpClient(
            base_url=config.luma_base_url,
            headers={
                "x-luma-api-key": api_key,
                "accept": "application/json",
            },
            requests_per_minute=config.rate_limit.requests_per_minute,
            max_concurrent=config.rate_limit.max_concurrent,
            timeout=config.rate_limit.request_timeout,
            retry=RetryPolicy.from_config(config.retry),
            name="luma",
        )
        return cls(http)

    async def list_events(
        self,
        sort_column: str = "start_at",
        sort_direction: str = "desc",
        cursor: Optional[str] = None,
        limit: int = 50,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> Page[LumaEvent]:
        params: dict[str, object] = {
            "sort_column": sort_column,
            "sort_direction": sort_direction,
            "pagination_limit": limit,
        }
        if cursor:
            params["pagination_cursor"] = cursor
        if after:
            params["after"] = after
        if before:
            params["before"] = before

        logger.debug("listing_events", cursor=cursor, after=after, before=before)
        data = await self.http.get_json(LIST_EVENTS_PATH, params=params)

        with parsing(LIST_EVENTS_PATH):
            return Page(
                items=[LumaEvent.from_entry(entry) for entry in data.get("entries") or []],
                next_cursor=data.get("next_cursor"),
                has_more=bool(data.get("has_more")),
            )

    async def list_guests(
        self,
        event_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Page[LumaGuest]:
        params: dict[str, object] = {
            "event_api_id": event_id,
            "pagination_limit": limit,
        }
        if cursor:
            params["pagination_cursor"] = cursor

        logger.debug("listing_guests", event_id=event_id, cursor=cursor)
        data = await self.http.get_json(GET_GUESTS_PATH, params=params)

        with parsing(GET_GUESTS_PATH):
            return Page(
                items=[
                    LumaGuest.from_entry(entry, event_api_id=event_id)
                    for entry in data.get("entries") or []
                ],
                next_cursor=data.get("next_cursor"),
                has_more=bool(data.get("has_more")),
            )

    async def get_event(self, event_id: str) -> EventDetail:
        logger.debug("fetching_event", event_id=event_id)
        data = await self.http.get_json(GET_EVENT_PATH, params={"api_id": event_id})
        with parsing(GET_EVENT_PATH):
            return EventDetail.from_dict(data)

    async def aclose(self) -> None:
        await self.http.aclose()
