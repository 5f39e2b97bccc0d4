"""Periodic decay of the shared memory store using pure asyncio.

Decay is wall-clock driven and independent of turn cadence, so idle
dialogues still lose stale memories. The loop ends as soon as the shutdown
event is set; `tick()` can be driven directly in tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatpipes.memory.store import SharedMemoryStore

logger = logging.getLogger(__name__)


class DecayScheduler:
    """Runs `store.decay()` every `interval` seconds until shut down."""

    def __init__(self, store: SharedMemoryStore, interval: float | None = None) -> None:
        self._store = store
        self._interval = interval if interval is not None else store.config.decay_interval_seconds
        self._shutdown: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self.ticks = 0

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run decay until shutdown_event is set."""
        logger.info("Decay scheduler started (interval=%ss)", self._interval)

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed

            self.tick()

        logger.info("Decay scheduler stopped.")

    def tick(self) -> int:
        try:
            deactivated = self._store.decay()
        except Exception as e:
            logger.error("Decay pass failed: %s", e)
            return 0
        self.ticks += 1
        return deactivated

    # ── Task helpers ──────────────────────────────────────────

    def spawn(self) -> asyncio.Task:
        """Start the loop as a background task on the running loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(self.start(self._shutdown))
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._shutdown is not None
        self._shutdown.set()
        await self._task
        self._task = None
        self._shutdown = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
