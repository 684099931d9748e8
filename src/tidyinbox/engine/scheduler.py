"""Periodic driver for the sweeper.

A single APScheduler interval job fires the sweeper's tick; there are no
per-rule timers. The job is registered with ``max_instances=1`` and
``coalesce=True`` so missed fires collapse into one, and the sweeper's own
guard turns any overlap that still gets through into a skipped tick.

Config is hot-reloaded at the start of every tick.

Usage:
    from tidyinbox.engine.scheduler import SweepScheduler

    scheduler = SweepScheduler(sweeper, interval_seconds=60)
    scheduler.start()
    ...
    scheduler.shutdown()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tidyinbox.config import get_config, reload_config_if_changed
from tidyinbox.core.errors import DatabaseError
from tidyinbox.core.logging import get_logger

if TYPE_CHECKING:
    from tidyinbox.engine.sweeper import Sweeper, SweepResult

logger = get_logger(__name__)

SWEEP_JOB_ID = "sweep"


class SweepScheduler:
    """Runs ``Sweeper.tick`` on a fixed interval.

    Attributes:
        _sweeper: The sweeper to drive
        _interval_seconds: Seconds between ticks
        _on_result: Optional callback for each tick's result (used by the CLI)
        _reload_config: Whether to hot-reload config before each tick
    """

    def __init__(
        self,
        sweeper: Sweeper,
        interval_seconds: int,
        on_result: Callable[[SweepResult], Awaitable[None] | None] | None = None,
        reload_config: bool = True,
    ):
        self._sweeper = sweeper
        self._interval_seconds = interval_seconds
        self._on_result = on_result
        self._reload_config = reload_config
        self._scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Register the interval job and start the scheduler (needs a running loop)."""
        self._scheduler.add_job(
            self.run_tick,
            "interval",
            seconds=self._interval_seconds,
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("sweep_scheduler_started", interval_seconds=self._interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("sweep_scheduler_stopped")

    async def run_tick(self) -> SweepResult | None:
        """One scheduled fire: reload config if it changed, then tick.

        Errors are logged and swallowed so one bad tick does not stop the
        interval job.
        """
        if self._reload_config and reload_config_if_changed():
            self._sweeper.apply_config(get_config())

        try:
            result = await self._sweeper.tick()
        except DatabaseError as e:
            logger.error("sweep_failed", error=str(e))
            return None

        if self._on_result is not None:
            maybe_awaitable = self._on_result(result)
            if maybe_awaitable is not None:
                await maybe_awaitable
        return result
