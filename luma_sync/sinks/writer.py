"""Batched overwrite/append writes to a tabular sink."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from luma_sync.client.http import RetryPolicy, retry_async
from luma_sync.client.ratelimit import Sleep
from luma_sync.config.settings import SyncConfig
from luma_sync.errors import RequestError, SinkWriteError
from luma_sync.models.rows import Row, RowSchema
from luma_sync.sinks.base import TabularSink
from luma_sync.utils.logging import get_logger, log_write_result

logger = get_logger("sinks.writer")

T = TypeVar("T")

HEADER_ROW = 1


class WriteMode(Enum):
    """How a write treats existing destination content."""

    OVERWRITE = "overwrite"
    APPEND = "append"


@dataclass
class WriteReport:
    """Outcome of one logical write."""

    destination: str
    mode: WriteMode
    rows_written: int = 0
    batches: int = 0
    first_row: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "destination": self.destination,
            "mode": self.mode.value,
            "rows_written": self.rows_written,
            "batches": self.batches,
            "first_row": self.first_row,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class BatchSinkWriter:
    """
    Writes schema rows to a tabular sink in bounded sub-batches.

    OVERWRITE clears the destination and rewrites the header; a sync run
    must use it at most once per destination or earlier writes are lost.
    APPEND writes after the destination's current extent.
    """

    def __init__(
        self,
        sink: TabularSink,
        batch_size: int = 500,
        batch_delay: float = 0.5,
        safety_margin: int = 10,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize the writer.

        Args:
            sink: Destination backend
            batch_size: Rows per sub-batch
            batch_delay: Seconds to wait between sub-batches
            safety_margin: Spare rows kept when resizing
            retry: Backoff policy applied to every sink call
            sleep: Coroutine used for delays
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.sink = sink
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.safety_margin = safety_margin
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        sink: TabularSink,
        config: SyncConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> "BatchSinkWriter":
        return cls(
            sink,
            batch_size=config.sheets.batch_size,
            batch_delay=config.sheets.batch_delay,
            safety_margin=config.sheets.safety_margin,
            retry=RetryPolicy.from_config(config.retry),
            sleep=sleep,
        )

    async def write(
        self,
        destination: str,
        schema: RowSchema,
        rows: Sequence[Row],
        mode: WriteMode,
    ) -> WriteReport:
        """
        Write rows to a destination.

        Rows are validated against the schema before any sink call. An empty
        APPEND is a no-op; an empty OVERWRITE leaves only the header.

        Raises:
            SchemaError: If a row does not match the schema
            SinkWriteError: If a sink call fails after retries
        """
        values = [schema.to_values(row) for row in rows]
        report = WriteReport(destination=destination, mode=mode)

        if mode is WriteMode.APPEND and not values:
            logger.debug("append_skipped_empty", destination=destination)
            return report

        started = time.monotonic()
        headers = schema.headers
        width = schema.width
        span = (HEADER_ROW, HEADER_ROW + len(values))

        await self._call(
            destination, span,
            lambda: self.sink.ensure(destination, headers),
        )

        if mode is WriteMode.OVERWRITE:
            await self._call(destination, span, lambda: self.sink.clear(destination))
            await self._call(
                destination, span,
                lambda: self.sink.resize(
                    destination,
                    len(values) + 1 + self.safety_margin,
                    width,
                ),
            )
            await self._call(
                destination, span,
                lambda: self.sink.write_header(destination, headers),
            )
            next_row = HEADER_ROW + 1
        else:
            current = await self._call(
                destination, span,
                lambda: self.sink.row_count(destination),
            )
            if current < HEADER_ROW:
                await self._call(
                    destination, span,
                    lambda: self.sink.write_header(destination, headers),
                )
                current = HEADER_ROW
            next_row = current + 1
            await self._call(
                destination, (next_row, next_row + len(values) - 1),
                lambda: self.sink.resize(
                    destination,
                    next_row + len(values) - 1 + self.safety_margin,
                    width,
                ),
            )

        report.first_row = next_row

        for offset in range(0, len(values), self.batch_size):
            batch = values[offset:offset + self.batch_size]
            first = next_row + offset
            last = first + len(batch) - 1

            await self._call(
                destination, (first, last),
                lambda: self.sink.write_rows(destination, first, batch),
            )
            report.rows_written += len(batch)
            report.batches += 1

            logger.debug(
                "sub_batch_written",
                destination=destination,
                batch=report.batches,
                first_row=first,
                last_row=last,
            )

            if offset + self.batch_size < len(values):
                await self._sleep(self.batch_delay)

        report.duration_seconds = time.monotonic() - started
        log_write_result(destination, mode.value, report.rows_written, report.duration_seconds)
        return report

    async def _call(
        self,
        destination: str,
        span: tuple[int, int],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await retry_async(
                operation,
                self.retry,
                sleep=self._sleep,
                description=f"sink write {destination}",
            )
        except RequestError as e:
            logger.error(
                "sink_write_failed",
                destination=destination,
                start_row=span[0],
                end_row=span[1],
                error=str(e),
            )
            raise SinkWriteError(destination, span[0], span[1], str(e)) from e
