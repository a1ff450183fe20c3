"""Durable storage for the sync state."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from luma_sync.errors import StateCorruptedError
from luma_sync.processor.states import SyncState
from luma_sync.utils.atomic import atomic_write_json
from luma_sync.utils.logging import get_logger

logger = get_logger("processor.store")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """
    A single JSON state file.

    Every save replaces the file atomically, so a reader always sees either
    the previous or the next state.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> SyncState:
        """
        Read the state, creating the default one on first use.

        Raises:
            StateCorruptedError: If the file cannot be decoded
        """
        if not self.path.exists():
            logger.debug("no_existing_state", path=str(self.path))
            state = SyncState()
            self.save(state)
            return state

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("state_load_failed", path=str(self.path), error=str(e))
            raise StateCorruptedError(f"Invalid JSON in {self.path}: {e}") from e

        return SyncState.from_dict(data)

    def save(self, state: SyncState) -> None:
        state.last_sync_time = utc_now()
        atomic_write_json(self.path, state.to_dict())
        logger.debug("state_saved", path=str(self.path))

    def reset(self) -> SyncState:
        """Overwrite the file with the default state."""
        state = SyncState()
        self.save(state)
        logger.info("state_reset", path=str(self.path))
        return state

    def clear(self) -> SyncState:
        """Delete the file, then write a fresh default state."""
        if self.path.exists():
            self.path.unlink()
            logger.info("state_file_removed", path=str(self.path))
        return self.reset()

    def stop(self) -> SyncState:
        """
        Mark the run completed without writing buffered rows.

        Buffered guests stay in the state file.
        """
        state = self.load()
        state.stop()
        self.save(state)
        logger.info(
            "sync_stopped",
            buffered_guests=len(state.guest_buffer),
            failed_events=len(state.failed_event_ids),
        )
        return state
