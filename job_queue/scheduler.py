"""
Job Scheduler — Owns the queue store, the producer, one consumer pool per
queue, the delayed-job promoter and the recurring cron jobs.

Built once at process start and passed to whatever needs it (API routes,
job handlers through HandlerContext). Nothing in the job path reaches for
a module-level instance.

Usage:
    scheduler = JobScheduler(queue, settings.queue, settings.schedule)
    ctx = HandlerContext(store=store, producer=scheduler.producer, queue=queue, ...)
    scheduler.register_handlers(build_handlers(ctx))
    await scheduler.start()
    ...
    await scheduler.stop()

Recurring jobs (APScheduler cron):
    daily-case-sync   0 2 * * *     fan out a batch sync of every followed case
    cleanup-old-jobs  0 3 * * sun   purge completed jobs past the grace window

Cron-enqueued job ids embed the fire date, so several processes sharing
one Redis enqueue a single copy per firing.
"""
from __future__ import annotations

import random
import structlog
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config.settings import QueueConfig, ScheduleConfig, Settings
from job_queue.consumer import DelayedJobPromoter, Handler, QueueConsumer
from job_queue.message_queue import MessageQueue, create_message_queue
from job_queue.payloads import JobKind, Queues
from job_queue.producer import JobProducer

logger = structlog.get_logger()


class JobScheduler:

    def __init__(
        self,
        queue: MessageQueue,
        queue_config: Optional[QueueConfig] = None,
        schedule_config: Optional[ScheduleConfig] = None,
    ):
        self.queue = queue
        self.queue_config = queue_config or QueueConfig()
        self.schedule_config = schedule_config or ScheduleConfig()
        self.producer = JobProducer(queue)
        self.consumers: dict[str, QueueConsumer] = {}
        self.promoter = DelayedJobPromoter(
            queue, Queues.ALL, interval_seconds=self.queue_config.delayed_promote_interval,
        )
        self._cron: Optional[AsyncIOScheduler] = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def register_handlers(self, handlers: dict[JobKind | str, Handler]):
        """Create one consumer per queue. Raises ValueError if a kind has no handler."""
        consumers = {}
        for name in Queues.ALL:
            tuning = self.queue_config.queues.get(name)
            consumers[name] = QueueConsumer(
                self.queue, name, handlers,
                concurrency=tuning.concurrency if tuning else 1,
                poll_interval=self.queue_config.poll_interval,
            )
        self.consumers = consumers

    async def start(self):
        if self._started:
            return
        if not self.consumers:
            raise RuntimeError("register_handlers() must be called before start()")

        await self.queue.connect()
        for name in Queues.ALL:
            tuning = self.queue_config.queues.get(name)
            if tuning:
                self.queue.set_retention(name, tuning.retain_completed, tuning.retain_failed)
            await self.queue.requeue_active(
                name, stalled_after_ms=self.queue_config.stalled_job_timeout * 1000,
            )

        for consumer in self.consumers.values():
            await consumer.start_background()
        await self.promoter.start_background()

        if self.schedule_config.enabled:
            self._start_cron()

        self._started = True
        logger.info("job_scheduler_started",
                    queues=list(self.consumers),
                    cron_enabled=self.schedule_config.enabled)

    async def stop(self):
        if not self._started:
            return
        if self._cron:
            self._cron.shutdown(wait=False)
            self._cron = None
        await self.promoter.stop()
        for consumer in self.consumers.values():
            await consumer.stop()
        await self.queue.close()
        self._started = False
        logger.info("job_scheduler_stopped")

    # ── recurring jobs ───────────────────────────────────────

    def _start_cron(self):
        tz = ZoneInfo(self.schedule_config.timezone)
        self._cron = AsyncIOScheduler(timezone=tz)
        self._cron.add_job(
            self.enqueue_daily_case_sync,
            trigger=CronTrigger.from_crontab(self.schedule_config.daily_case_sync_cron, timezone=tz),
            id=JobKind.DAILY_CASE_SYNC.value,
            replace_existing=True,
        )
        self._cron.add_job(
            self.enqueue_cleanup,
            trigger=CronTrigger.from_crontab(self.schedule_config.cleanup_cron, timezone=tz),
            id=JobKind.CLEANUP_OLD_JOBS.value,
            replace_existing=True,
        )
        self._cron.start()
        logger.info("recurring_jobs_scheduled",
                    daily_case_sync=self.schedule_config.daily_case_sync_cron,
                    cleanup=self.schedule_config.cleanup_cron,
                    timezone=self.schedule_config.timezone)

    def _fire_date(self) -> str:
        return datetime.now(ZoneInfo(self.schedule_config.timezone)).strftime("%Y-%m-%d")

    async def enqueue_daily_case_sync(self) -> str:
        job_id = await self.producer.schedule_daily_case_sync(
            job_id=f"{JobKind.DAILY_CASE_SYNC.value}:{self._fire_date()}",
        )
        logger.info("recurring_job_enqueued", kind=JobKind.DAILY_CASE_SYNC.value, job_id=job_id)
        return job_id

    async def enqueue_cleanup(self) -> str:
        job_id = await self.producer.schedule_cleanup(
            job_id=f"{JobKind.CLEANUP_OLD_JOBS.value}:{self._fire_date()}",
        )
        logger.info("recurring_job_enqueued", kind=JobKind.CLEANUP_OLD_JOBS.value, job_id=job_id)
        return job_id

    def cron_jobs(self) -> list[dict[str, Any]]:
        if not self._cron:
            return []
        return [
            {"id": job.id, "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None}
            for job in self._cron.get_jobs()
        ]


def create_job_system(
    settings: Settings,
    store,
    channels,
    case_source,
    emergency,
    queue: Optional[MessageQueue] = None,
    rng: Optional[random.Random] = None,
    clock: Optional[Callable[[], datetime]] = None,
):
    """
    Wire a scheduler and its handler context from settings.

    Returns ``(scheduler, ctx)``; neither is started.
    """
    from handlers import HandlerContext, build_handlers

    queue = queue or create_message_queue(asdict(settings.queue))
    scheduler = JobScheduler(queue, settings.queue, settings.schedule)
    ctx = HandlerContext(
        store=store,
        producer=scheduler.producer,
        channels=channels,
        case_source=case_source,
        emergency=emergency,
        queue=queue,
        triage=settings.triage,
        cleanup_grace_days=settings.queue.cleanup_grace_days,
        rng=rng or random.Random(),
    )
    if clock is not None:
        ctx.clock = clock
    scheduler.register_handlers(build_handlers(ctx))
    return scheduler, ctx
