"""Periodic expiration sweep.

The scheduler is infrastructure only: it decides *when* to sweep. What a sweep
does lives in ``GraphStateEngine.sweep_expired``. Expirations are minute
granular, so correctness never depends on a tight interval.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from .config import Config
from .engine import GraphStateEngine
from .logging_utils import log_debug, log_error


class ExpirationScheduler:
    """Calls ``engine.sweep_expired()`` every ``interval_seconds`` on the event loop.

    Ticks are serialized by an asyncio lock, so at most one sweep is ever in
    flight, even if ``tick()`` is also called by hand.
    """

    def __init__(self, engine: GraphStateEngine, interval_seconds: Optional[float] = None):
        interval = Config.SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        if interval <= 0:
            raise ValueError(f"interval_seconds must be positive (got {interval})")
        self.engine = engine
        self.interval_seconds = float(interval)
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> bool:
        """Run one sweep. Returns True if anything expired."""
        async with self._tick_lock:
            self.ticks += 1
            return self.engine.sweep_expired()

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="portalmap-expiration-sweep",
        )
        log_debug(f"Expiration sweep every {self.interval_seconds:g}s started")

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish. Safe to call twice."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log_debug("Expiration sweep stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception as exc:  # noqa: BLE001 - keep sweeping after a bad tick
                log_error(f"Expiration sweep failed: {exc}")

    async def __aenter__(self) -> "ExpirationScheduler":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
