import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from aztex.core.errors import PersistenceError
from aztex.core.simulator import MarketSimulator

logger = logging.getLogger("aztex")


class MarketScheduler:
    """Drives the simulator once per interval and logs a periodic heartbeat."""

    def __init__(self, simulator: MarketSimulator, interval: float = 60.0, heartbeat_interval: float = 600.0):
        self.simulator = simulator
        self.interval = interval
        self.heartbeat_interval = heartbeat_interval
        self.is_running = False
        self.start_time = datetime.now(timezone.utc)
        self.last_tick: Optional[datetime] = None
        self.ticks_run = 0
        self.failures = 0
        self._tasks = []

    async def start(self):
        if self.is_running:
            return
        self.is_running = True
        self.start_time = datetime.now(timezone.utc)
        self._tasks = [
            asyncio.create_task(self._tick_loop()),
            asyncio.create_task(self._heartbeat_loop()),
        ]
        logger.info(f"[SCHEDULER] Started. Tick every {self.interval}s")

    async def tick(self):
        """One guarded simulator tick. Failures are logged, never raised."""
        started = time.monotonic()
        try:
            await self.simulator.run_tick()
            self.ticks_run += 1
            self.last_tick = datetime.now(timezone.utc)
        except PersistenceError as e:
            self.failures += 1
            logger.error(f"[SCHEDULER] Tick not persisted: {e}")
        except Exception as e:
            self.failures += 1
            logger.exception(f"[SCHEDULER] Tick failed: {e}")

        elapsed = time.monotonic() - started
        if elapsed > self.interval:
            logger.warning(f"[SCHEDULER] Tick overran its interval: {elapsed:.2f}s > {self.interval}s")
        return elapsed

    async def _tick_loop(self):
        while self.is_running:
            elapsed = await self.tick()
            await asyncio.sleep(max(0.0, self.interval - elapsed))

    async def _heartbeat_loop(self):
        while self.is_running:
            await asyncio.sleep(self.heartbeat_interval)
            uptime = datetime.now(timezone.utc) - self.start_time
            logger.info(f"[HEARTBEAT] Uptime: {uptime} Ticks: {self.ticks_run} Failures: {self.failures}")

    async def stop(self):
        self.is_running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("[SCHEDULER] Stopped.")
