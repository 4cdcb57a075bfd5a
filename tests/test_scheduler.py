from __future__ import annotations
import asyncio
import logging
import random

import pytest

from ingestion.scheduler import RefreshScheduler


def _scheduler(**kwargs) -> RefreshScheduler:
    return RefreshScheduler(rng=random.Random(7), **kwargs)


class TestComputeDelay:

    def test_jitter_stays_within_ten_percent(self):
        scheduler = _scheduler()
        delays = [scheduler.compute_delay(300) for _ in range(200)]
        assert all(270 <= d <= 330 for d in delays)
        assert len(set(delays)) > 1

    def test_suspended_backs_off_fourfold(self):
        scheduler = _scheduler()
        delays = [scheduler.compute_delay(300, suspended=True) for _ in range(200)]
        assert all(1080 <= d <= 1320 for d in delays)

    def test_minimum_delay_floor(self):
        scheduler = _scheduler(min_delay=5.0)
        assert scheduler.compute_delay(1.0) == 5.0


def test_schedule_rejects_bad_interval_and_duplicates():
    scheduler = _scheduler()
    with pytest.raises(ValueError):
        scheduler.schedule("bad", lambda: None, 0)
    scheduler.schedule("news", lambda: None, 300)
    with pytest.raises(ValueError):
        scheduler.schedule("news", lambda: None, 300)


def test_trigger_unknown_job_raises():
    with pytest.raises(ValueError):
        asyncio.run(_scheduler().trigger("missing"))


def test_trigger_runs_sync_and_async_jobs():
    calls = []

    async def fetch_async():
        calls.append("async")

    async def main():
        scheduler = _scheduler()
        scheduler.schedule("sync", lambda: calls.append("sync"), 60)
        scheduler.schedule("async", fetch_async, 60)
        assert await scheduler.trigger("sync")
        assert await scheduler.trigger("async")
        return scheduler

    scheduler = asyncio.run(main())
    assert calls == ["sync", "async"]
    assert scheduler.jobs["sync"].runs == 1


def test_overlapping_run_is_skipped():
    async def main():
        release = asyncio.Event()
        scheduler = _scheduler()

        async def slow():
            await release.wait()

        scheduler.schedule("slow", slow, 60)
        first = asyncio.create_task(scheduler.trigger("slow"))
        await asyncio.sleep(0)
        assert scheduler.is_in_flight("slow")
        assert await scheduler.trigger("slow") is False
        release.set()
        assert await first is True
        return scheduler.jobs["slow"]

    job = asyncio.run(main())
    assert job.runs == 1
    assert job.skipped == 1


def test_condition_false_skips_run():
    calls = []

    async def main():
        scheduler = _scheduler()
        scheduler.schedule("flights", lambda: calls.append(1), 60, condition=lambda: False)
        assert await scheduler.trigger("flights") is False
        return scheduler.jobs["flights"]

    job = asyncio.run(main())
    assert calls == []
    assert job.skipped == 1


def test_suspended_trigger_skips_run():
    calls = []

    async def main():
        scheduler = _scheduler(is_suspended=lambda: True)
        scheduler.schedule("news", lambda: calls.append(1), 60)
        return await scheduler.trigger("news")

    assert asyncio.run(main()) is False
    assert calls == []


def test_failing_job_is_logged_and_counted(caplog):
    def boom():
        raise RuntimeError("feed unreachable")

    async def main():
        scheduler = _scheduler()
        scheduler.schedule("boom", boom, 60)
        return await scheduler.trigger("boom"), scheduler.jobs["boom"]

    with caplog.at_level(logging.ERROR, logger="ingestion.scheduler"):
        ran, job = asyncio.run(main())
    assert ran
    assert job.failures == 1
    assert job.runs == 0
    assert "Refresh boom failed" in caplog.text


def test_loop_keeps_running_after_failures():
    healthy = []

    def boom():
        raise RuntimeError("down")

    async def main():
        scheduler = _scheduler(min_delay=0.01)
        scheduler.schedule("healthy", lambda: healthy.append(1), 0.02)
        scheduler.schedule("boom", boom, 0.02)
        await scheduler.run_for(0.3)
        return scheduler

    scheduler = asyncio.run(main())
    assert len(healthy) >= 2
    assert scheduler.jobs["boom"].failures >= 2
    assert scheduler._tasks == {}
