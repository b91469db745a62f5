"""
scheduler.py - Periodic sync driver.

Every interval the scheduler optionally pings the remote, feeds the
result into the engine's online/offline state machine, and ticks the
engine (background upload, or initialization retry).
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from journal_sync.config import SYNC_INTERVAL_SECONDS
from journal_sync.sync.engine import SyncEngine, SyncState

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 300.0


class SyncScheduler:
    """
    Background scheduler for periodic synchronization.

    Handles:
    - Periodic ticks
    - Connectivity probing
    - Exponential backoff on unexpected failures
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
        check_connectivity: bool = True,
        on_state_change: Optional[Callable[[SyncState], None]] = None,
    ):
        self.engine = engine
        self.interval = interval_seconds
        self.check_connectivity = check_connectivity

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._failures = 0
        self._unsubscribe = engine.on_state_changed(on_state_change) if on_state_change else None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, in_background: bool = True) -> None:
        """Start the scheduler, in a daemon thread or blocking."""
        if self._running:
            return

        self._running = True
        if in_background:
            self._thread = threading.Thread(target=self._run_thread, daemon=True)
            self._thread.start()
        else:
            asyncio.run(self.run())

    def stop(self) -> None:
        """Stop the scheduler. Safe to call from any thread."""
        self._running = False
        if self._loop and self._stop_event:
            self._loop.call_soon_threadsafe(self._stop_event.set)
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _run_thread(self) -> None:
        asyncio.run(self.run())

    async def run(self) -> None:
        """Main async loop; returns once stop() is called."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._running = True
        logger.info(f"SyncScheduler started (interval={self.interval}s)")

        try:
            while self._running:
                try:
                    await self.tick_now()
                    self._failures = 0
                    delay = self.interval
                except Exception as e:
                    self._failures += 1
                    delay = min(MAX_BACKOFF_SECONDS, 2.0 ** (self._failures - 1))
                    logger.error(f"Sync cycle failed: {e}; retrying in {delay}s")

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    continue
        finally:
            await self.engine.dispose()
            logger.info("SyncScheduler stopped")

    async def tick_now(self) -> bool:
        """Perform a single ping + tick cycle immediately."""
        if self.check_connectivity:
            online = await self.engine.remote.ping()
            await self.engine.set_online(online)
        return await self.engine.tick()
