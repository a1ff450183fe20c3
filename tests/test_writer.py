"""Tests for the batch sink writer."""

import pytest

from luma_sync.client.http import RetryPolicy
from luma_sync.errors import SchemaError, SinkWriteError
from luma_sync.models.rows import GUESTS, guest_row
from luma_sync.sinks.writer import BatchSinkWriter, WriteMode
from tests.fakes import FakeClock, InMemorySink, make_guest


def rows(count: int, event_id: str = "evt-1") -> list[dict]:
    return [guest_row(make_guest(event_id, i)) for i in range(1, count + 1)]


def make_writer(sink: InMemorySink, batch_size: int = 2):
    clock = FakeClock()
    writer = BatchSinkWriter(
        sink,
        batch_size=batch_size,
        batch_delay=0.5,
        safety_margin=10,
        retry=RetryPolicy(max_attempts=2, base_delay=0, max_delay=0),
        sleep=clock.sleep,
    )
    return writer, clock


class TestOverwrite:
    """Overwrite mode."""

    @pytest.mark.asyncio
    async def test_call_sequence_and_batches(self):
        """ensure, clear, resize, header, then sub-batches with delays."""
        sink = InMemorySink()
        writer, clock = make_writer(sink)

        report = await writer.write("Guests", GUESTS, rows(5), WriteMode.OVERWRITE)

        ops = [op for dest, op in sink.calls]
        assert ops == [
            "ensure", "clear", "resize", "write_header",
            "write_rows", "write_rows", "write_rows",
        ]
        assert clock.sleeps == [0.5, 0.5]
        assert report.rows_written == 5
        assert report.batches == 3
        assert report.first_row == 2
        assert sink.sheets["Guests"][0] == GUESTS.headers
        assert [r[0] for r in sink.rows("Guests")] == [f"gst-evt-1-{i}" for i in range(1, 6)]

    @pytest.mark.asyncio
    async def test_replaces_existing_content(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)
        await writer.write("Guests", GUESTS, rows(4), WriteMode.OVERWRITE)

        await writer.write("Guests", GUESTS, rows(1, "evt-2"), WriteMode.OVERWRITE)

        assert [r[0] for r in sink.rows("Guests")] == ["gst-evt-2-1"]

    @pytest.mark.asyncio
    async def test_empty_leaves_header_only(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)
        await writer.write("Guests", GUESTS, rows(2), WriteMode.OVERWRITE)

        report = await writer.write("Guests", GUESTS, [], WriteMode.OVERWRITE)

        assert report.rows_written == 0
        assert sink.sheets["Guests"] == [GUESTS.headers]


class TestAppend:
    """Append mode."""

    @pytest.mark.asyncio
    async def test_appends_after_existing_rows(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)
        await writer.write("Guests", GUESTS, rows(2), WriteMode.OVERWRITE)

        report = await writer.write("Guests", GUESTS, rows(3, "evt-2"), WriteMode.APPEND)

        assert report.first_row == 4
        assert [r[0] for r in sink.rows("Guests")] == [
            "gst-evt-1-1", "gst-evt-1-2",
            "gst-evt-2-1", "gst-evt-2-2", "gst-evt-2-3",
        ]
        assert sink.count("Guests", "clear") == 1

    @pytest.mark.asyncio
    async def test_empty_append_is_noop(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)

        report = await writer.write("Guests", GUESTS, [], WriteMode.APPEND)

        assert report.rows_written == 0
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_append_to_new_destination_writes_header(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)

        report = await writer.write("Guests", GUESTS, rows(1), WriteMode.APPEND)

        assert report.first_row == 2
        assert sink.sheets["Guests"][0] == GUESTS.headers


class TestFailures:
    """Retry exhaustion and schema checks."""

    @pytest.mark.asyncio
    async def test_fatal_error_reports_row_span(self):
        """A rejected sub-batch surfaces as SinkWriteError with its rows."""
        sink = InMemorySink()
        sink.fail_writes["Guests"] = 1
        writer, _ = make_writer(sink)

        with pytest.raises(SinkWriteError) as exc_info:
            await writer.write("Guests", GUESTS, rows(5), WriteMode.OVERWRITE)

        error = exc_info.value
        assert (error.destination, error.start_row, error.end_row) == ("Guests", 2, 3)
        assert "Guests" in str(error)
        assert sink.count("Guests", "write_rows") == 1

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_retries(self):
        sink = InMemorySink()
        sink.transient_failures["Guests"] = 2
        writer, _ = make_writer(sink)

        with pytest.raises(SinkWriteError):
            await writer.write("Guests", GUESTS, rows(1), WriteMode.OVERWRITE)

        assert sink.count("Guests", "write_rows") == 2

    @pytest.mark.asyncio
    async def test_schema_mismatch_before_any_call(self):
        sink = InMemorySink()
        writer, _ = make_writer(sink)
        bad = rows(1)
        del bad[0]["user_email"]

        with pytest.raises(SchemaError):
            await writer.write("Guests", GUESTS, bad, WriteMode.OVERWRITE)

        assert sink.calls == []

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError):
            BatchSinkWriter(InMemorySink(), batch_size=0)
