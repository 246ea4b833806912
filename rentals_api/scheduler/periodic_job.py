"""
Periodic background jobs.

Each job runs at most once at a time: a slow run delays the next one but
never overlaps it.  Stopping a job interrupts the sleep between runs only;
a run that is in flight is always allowed to finish (and commit or roll
back) before ``stop()`` returns.
"""

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from rentals_api.core.config import settings

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class PeriodicJob:
    """
    Runs ``job`` every ``interval`` seconds, after an initial ``startup_delay``.

    Exceptions escaping ``job`` are logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval: Optional[float] = None,
        startup_delay: Optional[float] = None,
        repeat: bool = True,
    ):
        self.name = name
        self.job = job
        self.interval = settings.JOB_INTERVAL_SEC if interval is None else interval
        self.startup_delay = (
            settings.JOB_STARTUP_DELAY_SEC if startup_delay is None else startup_delay
        )
        self.repeat = repeat
        self.state = JobState.IDLE

        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

        # Statistics
        self.total_runs = 0
        self.failed_runs = 0
        self.last_run_at: Optional[datetime] = None
        self.last_run_duration: float = 0

    def start(self):
        """Schedule the loop on the running event loop."""
        if self.state is not JobState.IDLE:
            logger.warning("[%s] Can't start a job that is %s", self.name, self.state.value)
            return

        self.state = JobState.RUNNING
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        logger.info(
            "[%s] Started (every %ss, first run in %ss)",
            self.name,
            self.interval,
            self.startup_delay,
        )

    async def stop(self):
        """Stop the loop, waiting for an in-flight run to complete."""
        if self.state is not JobState.RUNNING:
            return

        logger.info("[%s] Stopping", self.name)
        self.state = JobState.STOPPING
        self._wake.set()
        if self._task:
            await self._task
        self.state = JobState.STOPPED
        logger.info("[%s] Stopped", self.name)

    async def _sleep(self, seconds: float):
        # Returns early when stop() sets the event
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _loop(self):
        await self._sleep(self.startup_delay)
        while self.state is JobState.RUNNING:
            await self.run_once()
            if not self.repeat:
                break
            await self._sleep(self.interval)

        if self.state is JobState.RUNNING:
            # Single-shot jobs end on their own
            self.state = JobState.STOPPED

    async def run_once(self):
        started = datetime.now(timezone.utc)
        loop = asyncio.get_running_loop()
        begin = loop.time()
        try:
            await self.job()
        except Exception:
            self.failed_runs += 1
            logger.exception("[%s] Run failed", self.name)
        finally:
            self.total_runs += 1
            self.last_run_at = started
            self.last_run_duration = loop.time() - begin
        logger.info("[%s] Executed in %.1fs", self.name, self.last_run_duration)

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_runs": self.total_runs,
            "failed_runs": self.failed_runs,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_duration_sec": round(self.last_run_duration, 3),
            "interval_sec": self.interval,
        }
