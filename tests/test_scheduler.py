"""
Tests for the job scheduler.

Covers:
  - Handler registration and start-up guards
  - Worker pools and the delayed-job promoter lifecycle
  - Recurring cron jobs and their once-per-day ids
  - Full wiring through create_job_system
"""
import asyncio

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

from config.settings import QueueConfig, ScheduleConfig, Settings
from job_queue.message_queue import JobState, QueueJob
from job_queue.payloads import JobKind, NotificationPayload, Queues
from job_queue.scheduler import JobScheduler, create_job_system


def _handlers():
    return {kind: AsyncMock(return_value={"ok": True}) for kind in JobKind}


async def _wait_for_state(queue, job_id, state, attempts=200):
    for _ in range(attempts):
        job = await queue.get_job(job_id)
        if job and job.state == state:
            return job
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {state}")


@pytest_asyncio.fixture
async def scheduler(queue):
    sched = JobScheduler(queue, QueueConfig(poll_interval=0.01, delayed_promote_interval=1),
                         ScheduleConfig(enabled=False))
    yield sched
    await sched.stop()


class TestRegistration:
    def test_missing_handler_raises(self, scheduler):
        handlers = _handlers()
        del handlers[JobKind.TRIAGE_REPORT]
        with pytest.raises(ValueError, match="triage-report"):
            scheduler.register_handlers(handlers)

    def test_one_consumer_per_queue_with_configured_concurrency(self, scheduler):
        scheduler.register_handlers(_handlers())
        assert set(scheduler.consumers) == set(Queues.ALL)
        assert scheduler.consumers[Queues.NOTIFICATIONS].concurrency == 10
        assert scheduler.consumers[Queues.CASE_SYNC].concurrency == 3

    @pytest.mark.asyncio
    async def test_start_without_handlers_raises(self, scheduler):
        with pytest.raises(RuntimeError):
            await scheduler.start()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        scheduler.register_handlers(_handlers())
        await scheduler.start()

        assert scheduler.running
        assert all(c.running for c in scheduler.consumers.values())
        assert scheduler.promoter.running
        assert scheduler.cron_jobs() == []

        await scheduler.stop()
        assert not scheduler.running
        assert not any(c.running for c in scheduler.consumers.values())
        assert not scheduler.promoter.running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler):
        scheduler.register_handlers(_handlers())
        await scheduler.start()
        tasks = list(scheduler.consumers[Queues.SOS_DISPATCH]._tasks)
        await scheduler.start()
        assert scheduler.consumers[Queues.SOS_DISPATCH]._tasks == tasks

    @pytest.mark.asyncio
    async def test_stalled_jobs_are_requeued_and_run(self, scheduler, queue, clock):
        handlers = _handlers()
        scheduler.register_handlers(handlers)
        job_id = await queue.add(QueueJob(queue=Queues.REPORT_TRIAGE, kind="triage-report",
                                          payload={"report_id": "rep_1"}))
        await queue.fetch_next(Queues.REPORT_TRIAGE)
        assert (await queue.get_counts(Queues.REPORT_TRIAGE))["active"] == 1
        clock.advance(scheduler.queue_config.stalled_job_timeout * 1000)

        with patch("job_queue.message_queue.logger") as log:
            await scheduler.start()

        await _wait_for_state(queue, job_id, JobState.COMPLETED)
        handlers[JobKind.TRIAGE_REPORT].assert_awaited_once()
        requeue_logs = [c for c in log.warning.call_args_list if c.args[0] == "stalled_jobs_requeued"]
        assert len(requeue_logs) == 1

    @pytest.mark.asyncio
    async def test_running_job_of_another_worker_is_left_alone(self, scheduler, queue, clock):
        handlers = _handlers()
        scheduler.register_handlers(handlers)
        job_id = await queue.add(QueueJob(queue=Queues.REPORT_TRIAGE, kind="triage-report",
                                          payload={"report_id": "rep_1"}))
        await queue.fetch_next(Queues.REPORT_TRIAGE)
        clock.advance(30_000)

        await scheduler.start()
        await asyncio.sleep(0.05)

        handlers[JobKind.TRIAGE_REPORT].assert_not_awaited()
        assert (await queue.get_job(job_id)).state == JobState.ACTIVE
        assert (await queue.get_counts(Queues.REPORT_TRIAGE))["active"] == 1

    @pytest.mark.asyncio
    async def test_workers_process_enqueued_jobs(self, scheduler, queue):
        handlers = _handlers()
        scheduler.register_handlers(handlers)
        await scheduler.start()

        job_id = await scheduler.producer.schedule_notification(
            NotificationPayload(user_id="u1", template="case-update"),
        )

        job = await _wait_for_state(queue, job_id, JobState.COMPLETED)
        assert job.result == {"ok": True}


class TestRecurringJobs:
    @pytest.mark.asyncio
    async def test_cron_jobs_registered_when_enabled(self, queue):
        sched = JobScheduler(queue, QueueConfig(poll_interval=0.01), ScheduleConfig(enabled=True, timezone="UTC"))
        sched.register_handlers(_handlers())
        await sched.start()
        try:
            jobs = {j["id"]: j for j in sched.cron_jobs()}
            assert set(jobs) == {"daily-case-sync", "cleanup-old-jobs"}
            assert jobs["daily-case-sync"]["next_run_time"].endswith("02:00:00+00:00")
            assert jobs["cleanup-old-jobs"]["next_run_time"].endswith("03:00:00+00:00")
        finally:
            await sched.stop()
        assert sched.cron_jobs() == []

    @pytest.mark.asyncio
    async def test_daily_case_sync_enqueued_once_per_day(self, scheduler, queue):
        first = await scheduler.enqueue_daily_case_sync()
        second = await scheduler.enqueue_daily_case_sync()

        assert first == second
        assert first.startswith("daily-case-sync:")
        assert (await queue.get_counts(Queues.CASE_SYNC))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_cleanup_enqueued_on_notifications_queue(self, scheduler, queue):
        job_id = await scheduler.enqueue_cleanup()
        job = await queue.get_job(job_id)
        assert job.queue == Queues.NOTIFICATIONS
        assert job.kind == JobKind.CLEANUP_OLD_JOBS.value


class TestCreateJobSystem:
    @pytest.mark.asyncio
    async def test_wires_handlers_to_shared_context(self, queue, store, channels, case_source, emergency, citizen):
        settings = Settings()
        settings.schedule.enabled = False
        settings.queue.poll_interval = 0.01
        await store.upsert_user(citizen)

        scheduler, ctx = create_job_system(settings, store, channels, case_source, emergency, queue=queue)

        assert ctx.producer is scheduler.producer
        assert ctx.queue is queue
        assert ctx.triage is settings.triage
        assert set(scheduler.consumers) == set(Queues.ALL)

        await scheduler.start()
        try:
            job_id = await scheduler.producer.schedule_notification(
                NotificationPayload(user_id="u_citizen", template="case-update",
                                    data={"caseNumber": "CRL-2024-1187"}),
            )
            job = await _wait_for_state(queue, job_id, JobState.COMPLETED)
        finally:
            await scheduler.stop()

        assert job.result["status"] == "simulated"
        assert await store.has_delivery(job_id)
