"""Periodic background tasks.

Used for the expired-entry sweep. A run that is still in progress when the
next tick comes due is not overlapped; the tick is skipped instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class TaskStats:
    """Run counters for a periodic task."""

    runs: int = 0
    skipped: int = 0
    failures: int = 0
    last_started_at: Optional[str] = None
    last_result: Any = None
    last_error: Optional[str] = None


class PeriodicTask:
    """Run an async callable every ``interval_s`` seconds.

    An interval of zero or less disables the task; ``start`` is then a no-op.
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[Any]], interval_s: float):
        self.name = name
        self.func = func
        self.interval_s = interval_s
        self.stats = TaskStats()
        self._lock = asyncio.Lock()
        self._background_task: Optional[asyncio.Task] = None
        self._runs: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._background_task is not None and not self._background_task.done()

    def start(self) -> None:
        if self.interval_s <= 0 or self.running:
            return
        self._background_task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("periodic task %s started (every %.1fs)", self.name, self.interval_s)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            # A slow run must not delay the clock; run_once skips overlaps.
            run = asyncio.create_task(self.run_once())
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

    async def run_once(self) -> bool:
        """Run the task now unless a run is already in progress.

        Returns True if the task ran, False if it was skipped.
        """
        if self._lock.locked():
            self.stats.skipped += 1
            logger.debug("periodic task %s still running; tick skipped", self.name)
            return False

        async with self._lock:
            self.stats.runs += 1
            self.stats.last_started_at = datetime.now(timezone.utc).isoformat()
            try:
                self.stats.last_result = await self.func()
                self.stats.last_error = None
            except Exception as e:
                self.stats.failures += 1
                self.stats.last_error = str(e)
                logger.exception("periodic task %s failed", self.name)
        return True

    async def stop(self) -> None:
        """Cancel the timer loop and wait for any in-flight run."""
        task, self._background_task = self._background_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)
