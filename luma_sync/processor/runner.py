"""Fixed-interval poller that drives the sync machine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from luma_sync.errors import StateCorruptedError, SyncError
from luma_sync.processor.machine import SyncMachine, TickAction, TickResult
from luma_sync.processor.states import SyncStage
from luma_sync.utils.atomic import AtomicWriteError
from luma_sync.utils.logging import get_logger

logger = get_logger("processor.runner")


@dataclass
class RunSummary:
    """What a polling session did."""

    ticks: int = 0
    errors: int = 0
    stage: str = SyncStage.EVENTS.value

    def to_dict(self) -> dict:
        return {"ticks": self.ticks, "errors": self.errors, "stage": self.stage}


class SyncRunner:
    """
    Calls the machine's tick on a fixed interval until the run completes.

    A failed tick is logged and retried on the next interval; a corrupted
    state file stops the runner. Only one tick is in flight at a time.
    """

    def __init__(
        self,
        machine: SyncMachine,
        sleep=asyncio.sleep,
    ) -> None:
        self.machine = machine
        self._sleep = sleep
        self._lock = asyncio.Lock()

    async def tick(self) -> Optional[TickResult]:
        """Run one tick, returning None if it failed."""
        async with self._lock:
            try:
                return await self.machine.process_pending_events()
            except StateCorruptedError:
                raise
            except (SyncError, AtomicWriteError, httpx.HTTPError) as e:
                logger.error(
                    "tick_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return None

    async def run(
        self,
        interval: float = 5.0,
        max_ticks: Optional[int] = None,
    ) -> RunSummary:
        """
        Poll until the run is completed, idle, or ``max_ticks`` is reached.

        Args:
            interval: Seconds between ticks
            max_ticks: Upper bound on ticks for this session
        """
        summary = RunSummary()
        logger.info("runner_started", interval=interval, max_ticks=max_ticks)

        while max_ticks is None or summary.ticks < max_ticks:
            result = await self.tick()
            summary.ticks += 1

            if result is None:
                summary.errors += 1
            else:
                summary.stage = result.stage.value
                logger.info(
                    "tick_completed",
                    action=result.action.value,
                    tick=summary.ticks,
                    **result.detail,
                )
                if result.stage is SyncStage.COMPLETED or result.action is TickAction.IDLE:
                    break

            await self._sleep(interval)

        summary.stage = self.machine.get_status().stage
        logger.info("runner_stopped", **summary.to_dict())
        return summary
