"""
Refresh Scheduler — periodic producer refreshes on one asyncio event loop.

Each scheduled job runs in its own loop task:
    sleep(jittered interval) → run → sleep → run ...

Rules per tick:
  - suspended (is_suspended() true): skip the run, back off to 4× the interval
  - condition() false: skip the run, keep the normal interval
  - previous run of the same job still in flight: skip
  - exception from the job: logged with the job name; the job and every
    other job keep their schedule

±10% jitter keeps producers that share an interval from firing in lockstep.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from config.settings import JITTER_FRACTION, MIN_REFRESH_SECONDS, SUSPENDED_REFRESH_MULTIPLIER

logger = logging.getLogger(__name__)

RefreshFn = Callable[[], Union[Awaitable[Any], Any]]


@dataclass
class ScheduledJob:
    name: str
    fn: RefreshFn
    interval: float                      # seconds
    condition: Optional[Callable[[], bool]] = None
    runs: int = 0
    failures: int = 0
    skipped: int = 0


class RefreshScheduler:
    """
    Usage:
        scheduler = RefreshScheduler()
        scheduler.schedule("natural", engine_refresh_quakes, 300)
        await scheduler.run_for(3600)
    """

    def __init__(
        self,
        is_suspended: Callable[[], bool] = lambda: False,
        min_delay: float = MIN_REFRESH_SECONDS,
        rng: Optional[random.Random] = None,
    ):
        self._is_suspended = is_suspended
        self.min_delay = min_delay
        self._rng = rng or random.Random()
        self.jobs: dict[str, ScheduledJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._in_flight: set[str] = set()
        self._running = False

    def compute_delay(self, interval: float, suspended: bool = False) -> float:
        adjusted = interval * (SUSPENDED_REFRESH_MULTIPLIER if suspended else 1)
        jitter = adjusted * JITTER_FRACTION
        jittered = adjusted + (self._rng.random() * 2 - 1) * jitter
        return max(self.min_delay, jittered)

    def schedule(
        self,
        name: str,
        fn: RefreshFn,
        interval: float,
        condition: Optional[Callable[[], bool]] = None,
    ) -> ScheduledJob:
        """Register a job. Starts immediately if the scheduler is already running."""
        if interval <= 0:
            raise ValueError(f"refresh interval for {name} must be positive")
        if name in self.jobs:
            raise ValueError(f"refresh job {name} already scheduled")
        job = ScheduledJob(name=name, fn=fn, interval=interval, condition=condition)
        self.jobs[name] = job
        if self._running:
            self._tasks[name] = asyncio.get_running_loop().create_task(self._loop(job))
        logger.info("Scheduled refresh %s every %.0fs", name, interval)
        return job

    def is_in_flight(self, name: str) -> bool:
        return name in self._in_flight

    async def _execute(self, job: ScheduledJob) -> bool:
        """Run the job once unless a guard applies. Returns True if it ran."""
        if job.condition is not None and not job.condition():
            job.skipped += 1
            return False
        if job.name in self._in_flight:
            logger.debug("Refresh %s still in flight, skipping tick", job.name)
            job.skipped += 1
            return False

        self._in_flight.add(job.name)
        try:
            result = job.fn()
            if inspect.isawaitable(result):
                await result
            job.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            job.failures += 1
            logger.exception("Refresh %s failed", job.name)
        finally:
            self._in_flight.discard(job.name)
        return True

    async def trigger(self, name: str) -> bool:
        """Run a job now, outside its schedule. Same guards as a scheduled tick."""
        job = self.jobs.get(name)
        if job is None:
            raise ValueError(f"unknown refresh job: {name}")
        if self._is_suspended():
            job.skipped += 1
            return False
        return await self._execute(job)

    async def _loop(self, job: ScheduledJob) -> None:
        delay = self.compute_delay(job.interval, self._is_suspended())
        while self._running:
            await asyncio.sleep(delay)
            if self._is_suspended():
                job.skipped += 1
                delay = self.compute_delay(job.interval, suspended=True)
                continue
            await self._execute(job)
            delay = self.compute_delay(job.interval)

    # ─── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start every registered job. Must be called from inside a running loop."""
        if self._running:
            return
        self._running = True
        loop = asyncio.get_running_loop()
        for name, job in self.jobs.items():
            self._tasks[name] = loop.create_task(self._loop(job))

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Refresh scheduler stopped")

    async def run_for(self, seconds: float) -> None:
        self.start()
        try:
            await asyncio.sleep(seconds)
        finally:
            await self.stop()
