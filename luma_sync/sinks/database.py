"""Supabase (PostgREST) backend for the relational sink."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from luma_sync.client.http import HttpClient, RetryPolicy
from luma_sync.config.settings import Credentials, SyncConfig
from luma_sync.errors import RequestError, SinkWriteError
from luma_sync.models.rows import Row
from luma_sync.sinks.base import RelationalSink
from luma_sync.utils.logging import get_logger

logger = get_logger("sinks.database")

EVENTS_TABLE = "events"
GUESTS_TABLE = "guests"
HOSTS_TABLE = "hosts"

EVENTS_CONFLICT_KEY = "api_id"
GUESTS_CONFLICT_KEY = "api_id"
HOSTS_CONFLICT_KEY = "api_id,event_api_id"


def _nullify(row: Row) -> dict[str, Any]:
    """Empty cells become SQL NULLs."""
    return {key: (None if value == "" else value) for key, value in row.items()}


def event_record(row: Row) -> dict[str, Any]:
    """Database record for an event row; the address is stored as JSON."""
    record = _nullify(row)
    address = record.pop("geo_address", None)
    record["geo_address_json"] = {"address": address} if address else None
    return record


def guest_record(row: Row) -> dict[str, Any]:
    return _nullify(row)


def host_record(row: Row) -> dict[str, Any]:
    record = _nullify(row)
    record.pop("event_name", None)
    return record


class SupabaseSink(RelationalSink):
    """
    Upserts through the PostgREST endpoint of a Supabase project.

    Each upsert is a single POST with ``Prefer: resolution=merge-duplicates``
    so re-running a sync updates rows in place instead of duplicating them.
    """

    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    def create(
        cls,
        credentials: Credentials,
        config: SyncConfig,
    ) -> Optional["SupabaseSink"]:
        """Build the sink, or None when the deployment has no database."""
        if not credentials.database_enabled:
            return None
        key = credentials.supabase_service_key
        http = HttpClient(
            base_url=f"{credentials.supabase_url}/rest/v1",
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            requests_per_minute=config.sheets.requests_per_minute,
            max_concurrent=config.sheets.max_concurrent,
            timeout=config.sheets.request_timeout,
            retry=RetryPolicy.from_config(config.retry),
            name="supabase",
        )
        return cls(http)

    async def upsert(
        self,
        table: str,
        records: Sequence[dict[str, Any]],
        conflict_key: str,
    ) -> None:
        """
        Insert or update records keyed by ``conflict_key``.

        Raises:
            SinkWriteError: If the request fails after retries
        """
        if not records:
            return

        try:
            await self.http.request_with_retry(
                "POST",
                f"/{table}",
                params={"on_conflict": conflict_key},
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                json=list(records),
            )
        except RequestError as e:
            logger.error(
                "database_upsert_failed",
                table=table,
                records=len(records),
                error=str(e),
            )
            raise SinkWriteError(table, 1, len(records), str(e)) from e

        logger.info("database_upserted", table=table, records=len(records))

    async def aclose(self) -> None:
        await self.http.aclose()
