"""
Interval scheduler for the discovery recomputation jobs.

Jobs are plain `async def` callables registered under a name. In production
APScheduler fires them on fixed intervals inside the app's event loop; tests
(and operators) call `run_job(name)` to execute one immediately and await it.

Overlapping runs of the same job are allowed (max_instances=2): every job
write is an idempotent set-to-computed-value, so a double run only costs a
redundant recompute.
"""
import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class DiscoveryScheduler:
    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._jobs: dict[str, Job] = {}

    def register(self, name: str, job: Job, interval_seconds: int) -> None:
        if name in self._jobs:
            raise ValueError(f"Job {name!r} already registered")
        self._jobs[name] = job
        self._scheduler.add_job(
            job,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=name,
            name=name,
            max_instances=2,
            coalesce=True,
        )
        logger.info("Registered job %s (every %ds)", name, interval_seconds)

    async def run_job(self, name: str) -> object:
        """Run a registered job now, in the caller's task. Raises KeyError if unknown."""
        job = self._jobs[name]
        logger.info("Running job %s on demand", name)
        return await job()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        self._scheduler.start()
        logger.info("Scheduler started with jobs: %s", ", ".join(self._jobs) or "none")

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
