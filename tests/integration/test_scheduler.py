"""
Integration tests for upsales/scheduler.py

Runs the daily job wiring against a stub batch.
"""
import logging
from dataclasses import replace
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock

from upsales.config import SchedulerConfig
from upsales.exceptions import KeyCRMConnectionError
from upsales.pipeline import CompensationReport
from upsales.runner import RunResult
from upsales.scheduler import JOB_ID, CompensationScheduler, JobStatus


def ok_batch(stats=None):
    result = RunResult(report=CompensationReport(months=()), stats=stats or {"orders_seen": 0})
    return AsyncMock(return_value=result)


@pytest.fixture
def scheduler_config(app_config):
    return replace(app_config, scheduler=SchedulerConfig(hour=6, minute=0, max_history=3))


class TestRunOnce:
    """Tests for a single job execution."""

    @pytest.mark.asyncio
    async def test_success_recorded(self, scheduler_config):
        batch = ok_batch({"orders_seen": 12})
        scheduler = CompensationScheduler(scheduler_config, batch=batch)

        result = await scheduler.run_once()

        batch.assert_awaited_once_with(scheduler_config)
        assert result["orders_seen"] == 12
        execution, = scheduler.get_history()
        assert execution["status"] == JobStatus.SUCCESS.value
        assert execution["error"] is None
        assert execution["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_failure_recorded_and_raised(self, scheduler_config):
        batch = AsyncMock(side_effect=KeyCRMConnectionError("Connection failed"))
        scheduler = CompensationScheduler(scheduler_config, batch=batch)

        with pytest.raises(KeyCRMConnectionError):
            await scheduler.run_once()

        execution, = scheduler.get_history()
        assert execution["status"] == "failed"
        assert execution["error"] == "Connection failed"

    @pytest.mark.asyncio
    async def test_history_bounded_newest_first(self, scheduler_config):
        batch = ok_batch()
        scheduler = CompensationScheduler(scheduler_config, batch=batch)

        for _ in range(5):
            await scheduler.run_once()

        history = scheduler.get_history(limit=10)
        assert len(history) == 3
        assert history[0]["started_at"] >= history[-1]["started_at"]

    def test_missed_job_recorded(self, scheduler_config):
        scheduler = CompensationScheduler(scheduler_config, batch=ok_batch())

        scheduler._on_job_missed(SimpleNamespace(job_id=JOB_ID))

        assert scheduler.get_history()[0]["status"] == "missed"


class TestScheduling:
    """Tests for the APScheduler wiring."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, scheduler_config):
        scheduler = CompensationScheduler(scheduler_config, batch=ok_batch())

        scheduler.start()
        try:
            assert scheduler.is_running
            next_run = scheduler.next_run
            assert next_run is not None
            assert (next_run.hour, next_run.minute) == (6, 0)
            assert str(next_run.tzinfo) == "Europe/Kyiv"
        finally:
            scheduler.shutdown(wait=False)

        assert not scheduler.is_running
        assert scheduler.next_run is None

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler_config, caplog):
        scheduler = CompensationScheduler(scheduler_config, batch=ok_batch())

        scheduler.start()
        try:
            first = scheduler._scheduler
            with caplog.at_level(logging.WARNING, logger="upsales.scheduler"):
                scheduler.start()
            assert scheduler._scheduler is first
            assert "already started" in caplog.text
        finally:
            scheduler.shutdown(wait=False)

    def test_not_started(self, scheduler_config):
        scheduler = CompensationScheduler(scheduler_config, batch=ok_batch())
        assert not scheduler.is_running
        assert scheduler.next_run is None
        scheduler.shutdown()
