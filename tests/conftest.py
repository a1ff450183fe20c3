"""Pytest fixtures shared across the suite."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from luma_sync.client.http import RetryPolicy
from luma_sync.client.luma import EventSource
from luma_sync.config.settings import SyncConfig
from luma_sync.processor.machine import SyncMachine
from luma_sync.processor.store import StateStore
from luma_sync.sinks.base import RelationalSink
from luma_sync.sinks.writer import BatchSinkWriter
from tests.fakes import InMemorySink, no_sleep


@pytest.fixture
def config(tmp_path: Path) -> SyncConfig:
    config = SyncConfig()
    config.sync.flush_threshold = 3
    config.sync.guests_page_size = 2
    config.sheets.batch_size = 5
    config.sheets.batch_delay = 0
    config.retry.base_delay = 0
    config.retry.max_delay = 0
    return config.with_state_dir(tmp_path / "state")


@pytest.fixture
def store(config: SyncConfig) -> StateStore:
    return StateStore(config.storage.state_path)


@pytest.fixture
def sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def writer(sink: InMemorySink) -> BatchSinkWriter:
    return BatchSinkWriter(
        sink,
        batch_size=5,
        batch_delay=0,
        retry=RetryPolicy(max_attempts=2, base_delay=0, max_delay=0),
        sleep=no_sleep,
    )


@pytest.fixture
def make_machine(writer: BatchSinkWriter, store: StateStore, config: SyncConfig):
    def factory(
        source: EventSource,
        database: Optional[RelationalSink] = None,
    ) -> SyncMachine:
        return SyncMachine(source, writer, store, config, database=database)

    return factory
