"""Tests for queue stats, job-system health and completed-job cleanup."""
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from config.settings import QueueConfig, ScheduleConfig
from handlers.maintenance import DAY_MS, handle_cleanup
from job_queue.health import check_job_system_health, get_queue_stats
from job_queue.message_queue import QueueJob
from job_queue.payloads import CleanupPayload, JobKind, Queues
from job_queue.scheduler import JobScheduler


async def _finish(queue, name, count, ok=True):
    for _ in range(count):
        await queue.add(QueueJob(queue=name, kind="send-notification"))
        job = await queue.fetch_next(name)
        if ok:
            await queue.complete(job, {"status": "sent"})
        else:
            await queue.fail(job, "provider rejected")


@pytest_asyncio.fixture
async def scheduler(queue):
    handlers = {kind: AsyncMock(return_value={}) for kind in JobKind}
    sched = JobScheduler(queue, QueueConfig(poll_interval=0.01), ScheduleConfig(enabled=False))
    sched.register_handlers(handlers)
    yield sched
    await sched.stop()


class TestQueueStats:
    @pytest.mark.asyncio
    async def test_every_queue_reported_with_all_counts(self, queue, producer):
        await _finish(queue, Queues.NOTIFICATIONS, 2)
        await producer.schedule_batch_case_sync(["c1"])

        stats = await get_queue_stats(queue)

        assert [q["name"] for q in stats["queues"]] == list(Queues.ALL)
        by_name = {q["name"]: q for q in stats["queues"]}
        assert by_name[Queues.NOTIFICATIONS]["completed"] == 2
        assert by_name[Queues.CASE_SYNC]["delayed"] == 1
        for q in stats["queues"]:
            assert set(q) == {"name", "waiting", "active", "completed", "failed", "delayed"}


class TestHealth:
    @pytest.mark.asyncio
    async def test_unhealthy_when_workers_not_running(self, scheduler):
        health = await check_job_system_health(scheduler)
        assert health["status"] == "unhealthy"
        assert {w["status"] for w in health["workers"]} == {"stopped"}

    @pytest.mark.asyncio
    async def test_healthy_when_running(self, scheduler):
        await scheduler.start()
        health = await check_job_system_health(scheduler)
        assert health["status"] == "healthy"
        assert [w["name"] for w in health["workers"]] == list(Queues.ALL)

    @pytest.mark.asyncio
    async def test_degraded_above_failed_threshold(self, scheduler, queue):
        await _finish(queue, Queues.NOTIFICATIONS, 10, ok=False)
        await scheduler.start()
        assert (await check_job_system_health(scheduler))["status"] == "healthy"

        await _finish(queue, Queues.NOTIFICATIONS, 1, ok=False)
        assert (await check_job_system_health(scheduler))["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_one_stopped_pool_is_unhealthy(self, scheduler):
        await scheduler.start()
        await scheduler.consumers[Queues.CASE_SYNC].stop()
        health = await check_job_system_health(scheduler)
        assert health["status"] == "unhealthy"
        stopped = [w["name"] for w in health["workers"] if w["status"] == "stopped"]
        assert stopped == [Queues.CASE_SYNC]


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_completed_jobs_past_grace(self, ctx, queue, clock):
        await _finish(queue, Queues.NOTIFICATIONS, 3)
        await _finish(queue, Queues.SOS_DISPATCH, 1)
        clock.advance(8 * DAY_MS)
        await _finish(queue, Queues.NOTIFICATIONS, 1)
        await _finish(queue, Queues.NOTIFICATIONS, 1, ok=False)

        result = await handle_cleanup(ctx, QueueJob(queue=Queues.NOTIFICATIONS, kind="cleanup-old-jobs"),
                                      CleanupPayload())

        assert result.grace_days == 7
        assert result.removed[Queues.NOTIFICATIONS] == 3
        assert result.removed[Queues.SOS_DISPATCH] == 1
        counts = await queue.get_counts(Queues.NOTIFICATIONS)
        assert counts["completed"] == 1
        assert counts["failed"] == 1

    @pytest.mark.asyncio
    async def test_grace_days_from_payload(self, ctx, queue, clock):
        await _finish(queue, Queues.NOTIFICATIONS, 2)
        clock.advance(2 * DAY_MS)

        kept = await handle_cleanup(ctx, QueueJob(queue=Queues.NOTIFICATIONS, kind="cleanup-old-jobs"),
                                    CleanupPayload())
        purged = await handle_cleanup(ctx, QueueJob(queue=Queues.NOTIFICATIONS, kind="cleanup-old-jobs"),
                                      CleanupPayload(grace_days=1))

        assert kept.removed[Queues.NOTIFICATIONS] == 0
        assert purged.removed[Queues.NOTIFICATIONS] == 2
