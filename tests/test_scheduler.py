"""Tests for the interval scheduler that drives the sweeper."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tidyinbox.config_schema import AppConfig
from tidyinbox.core.errors import DatabaseError
from tidyinbox.engine.scheduler import SWEEP_JOB_ID, SweepScheduler
from tidyinbox.engine.sweeper import SweepResult


@pytest.fixture
def sweeper() -> MagicMock:
    s = MagicMock()
    s.tick = AsyncMock(return_value=SweepResult(sweep_id="abc", rules_due=1))
    return s


class TestRunTick:
    async def test_ticks_and_reports_result(self, sweeper: MagicMock) -> None:
        seen: list[SweepResult] = []
        scheduler = SweepScheduler(sweeper, 60, on_result=seen.append, reload_config=False)

        result = await scheduler.run_tick()

        sweeper.tick.assert_awaited_once()
        assert result is not None
        assert seen == [result]

    async def test_async_result_callback(self, sweeper: MagicMock) -> None:
        on_result = AsyncMock()
        scheduler = SweepScheduler(sweeper, 60, on_result=on_result, reload_config=False)

        await scheduler.run_tick()

        on_result.assert_awaited_once()

    async def test_database_error_is_logged_not_raised(self, sweeper: MagicMock) -> None:
        sweeper.tick.side_effect = DatabaseError("database is locked")
        on_result = MagicMock()
        scheduler = SweepScheduler(sweeper, 60, on_result=on_result, reload_config=False)

        assert await scheduler.run_tick() is None
        on_result.assert_not_called()

    async def test_applies_reloaded_config(self, sweeper: MagicMock) -> None:
        new_config = AppConfig()
        scheduler = SweepScheduler(sweeper, 60)

        with (
            patch("tidyinbox.engine.scheduler.reload_config_if_changed", return_value=True),
            patch("tidyinbox.engine.scheduler.get_config", return_value=new_config),
        ):
            await scheduler.run_tick()

        sweeper.apply_config.assert_called_once_with(new_config)

    async def test_unchanged_config_not_reapplied(self, sweeper: MagicMock) -> None:
        scheduler = SweepScheduler(sweeper, 60)

        with patch("tidyinbox.engine.scheduler.reload_config_if_changed", return_value=False):
            await scheduler.run_tick()

        sweeper.apply_config.assert_not_called()


class TestLifecycle:
    async def test_start_registers_single_instance_job(self, sweeper: MagicMock) -> None:
        scheduler = SweepScheduler(sweeper, 120, reload_config=False)
        scheduler.start()
        try:
            assert scheduler.running
            job = scheduler._scheduler.get_job(SWEEP_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.trigger.interval.total_seconds() == 120
        finally:
            scheduler.shutdown()
        assert not scheduler.running
