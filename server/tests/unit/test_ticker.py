"""测试 ticker.py — APScheduler interval 任务与取消句柄。"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from apscheduler.jobstores.base import JobLookupError

from sightline.pipeline.ticker import IntervalTicker, TickHandle


class TestTickHandle:
    """取消句柄。"""

    def test_cancel_removes_job(self):
        job = MagicMock()
        handle = TickHandle(job)
        handle.cancel()
        assert handle.cancelled is True
        job.remove.assert_called_once()

    def test_cancel_twice_is_safe(self):
        job = MagicMock()
        handle = TickHandle(job)
        handle.cancel()
        handle.cancel()
        job.remove.assert_called_once()

    def test_cancel_already_removed_job(self):
        job = MagicMock()
        job.remove.side_effect = JobLookupError("capture")
        TickHandle(job).cancel()


class TestIntervalTicker:
    """真实调度器，短间隔。"""

    async def test_fires_repeatedly_until_cancelled(self):
        ticker = IntervalTicker(0.05)
        fired = 0

        async def callback():
            nonlocal fired
            fired += 1

        handle = ticker.start(callback)
        try:
            await asyncio.sleep(0.3)
            handle.cancel()
            count = fired
            assert count >= 2
            await asyncio.sleep(0.15)
            assert fired == count
        finally:
            ticker.shutdown()

    async def test_restart_replaces_job(self):
        ticker = IntervalTicker(10.0, job_id="capture")
        try:
            first = ticker.start(MagicMock())
            first.cancel()
            second = ticker.start(MagicMock())
            assert second.cancelled is False
            assert len(ticker._scheduler.get_jobs()) == 1
        finally:
            ticker.shutdown()

    async def test_shutdown_without_start(self):
        IntervalTicker(1.0).shutdown()
