"""定时触发 — APScheduler interval 任务，返回可取消的句柄。"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from apscheduler.jobstores.base import JobLookupError

logger = logging.getLogger(__name__)


class TickHandle:
    """单个定时任务的取消句柄，重复取消无副作用。"""

    def __init__(self, job: Any) -> None:
        self._job = job
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._job.remove()
        except JobLookupError:
            pass


class IntervalTicker:
    """按固定间隔调用协程回调。

    max_instances=1 + coalesce：上一次回调未结束时不会叠加执行。
    """

    def __init__(self, interval_seconds: float, job_id: str = "capture") -> None:
        self.interval_seconds = interval_seconds
        self.job_id = job_id
        self._scheduler = None

    def start(self, callback: Callable[[], Awaitable[Any]]) -> TickHandle:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.start()

        job = self._scheduler.add_job(
            callback,
            "interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug("Ticker %s started (every %.2fs)", self.job_id, self.interval_seconds)
        return TickHandle(job)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
