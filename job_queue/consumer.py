"""
Queue Consumer — Pulls jobs from one named queue and runs their handlers.

Runs as ``concurrency`` async worker tasks inside the application process.
For horizontal scaling, run several processes against the same Redis:
each waiting job is popped by exactly one worker.

Topology:
  ┌──────────────┐       ┌─────────────────┐       ┌────────────┐
  │ Services /   │──add──▶│ waiting (zset)  │──────▶│  Consumer  │
  │ Scheduler    │       │ priority, seq    │ fetch │  Worker(s) │
  └──────────────┘       └─────────────────┘       └─────┬──────┘
                                  ▲                       │
                                  │ promote               │ fail
                         ┌────────┴────────┐              │
                         │ delayed (zset)  │◀── retry ────┤
                         └─────────────────┘              │
                         ┌─────────────────┐              │
                         │ failed (zset)   │◀── exhaust ──┘
                         └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from job_queue.errors import UnknownJobKindError
from job_queue.message_queue import MessageQueue, QueueJob
from job_queue.payloads import JobKind, kinds_for_queue, parse_payload

logger = structlog.get_logger()

Handler = Callable[[QueueJob, BaseModel], Awaitable[Any]]


class QueueConsumer:
    """
    Consumes jobs from one queue and dispatches them by kind.

    The handler table must cover every kind bound to the queue; a gap is
    a construction error rather than a runtime surprise.

    Usage:
        consumer = QueueConsumer(queue, Queues.NOTIFICATIONS, handlers, concurrency=10)
        await consumer.start_background()
        await consumer.stop()            # waits for in-flight jobs
    """

    def __init__(
        self,
        queue: MessageQueue,
        queue_name: str,
        handlers: dict[JobKind | str, Handler],
        concurrency: int = 1,
        poll_interval: float = 0.5,
    ):
        expected = kinds_for_queue(queue_name)
        if not expected:
            raise ValueError(f"Unknown queue '{queue_name}'")

        table: dict[JobKind, Handler] = {}
        for kind, handler in handlers.items():
            kind = JobKind(kind)
            if kind in expected:
                table[kind] = handler
        missing = expected - table.keys()
        if missing:
            names = ", ".join(sorted(k.value for k in missing))
            raise ValueError(f"Queue '{queue_name}' has no handler for: {names}")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue = queue
        self.queue_name = queue_name
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._handlers = table
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running and any(not t.done() for t in self._tasks)

    async def start_background(self) -> list[asyncio.Task]:
        """Spawn the worker tasks. Returns their handles."""
        if self._running:
            return self._tasks
        self._running = True
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"{self.queue_name}-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("queue_consumer_started",
                    queue=self.queue_name,
                    concurrency=self.concurrency)
        return self._tasks

    async def stop(self):
        """Stop fetching new jobs and wait for in-flight ones to finish."""
        self._running = False
        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("queue_consumer_stopped", queue=self.queue_name)

    async def process_next(self) -> Optional[QueueJob]:
        """Fetch and run exactly one job. Returns it, or None when nothing is eligible."""
        job = await self.queue.fetch_next(self.queue_name)
        if job is None:
            return None
        await self._run_job(job)
        return job

    async def _worker(self, index: int):
        while self._running:
            try:
                job = await self.process_next()
            except Exception as e:
                logger.error("consumer_loop_error",
                             queue=self.queue_name,
                             worker=index,
                             error=str(e))
                job = None
            if job is None:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def _run_job(self, job: QueueJob):
        logger.info("job_started",
                    queue=self.queue_name,
                    job_id=job.job_id,
                    kind=job.kind,
                    attempt=job.attempts_made + 1,
                    priority=job.priority)
        try:
            handler = self._handler_for(job.kind)
            payload = parse_payload(job.kind, job.payload)
            result = await handler(job, payload)
        except Exception as e:
            logger.error("job_failed",
                         queue=self.queue_name,
                         job_id=job.job_id,
                         kind=job.kind,
                         attempt=job.attempts_made + 1,
                         max_attempts=job.max_attempts,
                         error=str(e))
            await self.queue.fail(job, e)
            return

        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        await self.queue.complete(job, result)
        logger.info("job_completed",
                    queue=self.queue_name,
                    job_id=job.job_id,
                    kind=job.kind,
                    duration_ms=job.duration_ms)

    def _handler_for(self, kind: str) -> Handler:
        try:
            handler = self._handlers.get(JobKind(kind))
        except ValueError:
            handler = None
        if handler is None:
            raise UnknownJobKindError(kind, self.queue_name)
        return handler


# ──────────────────────────────────────────────────────────────
#  Delayed Job Promoter
# ──────────────────────────────────────────────────────────────

class DelayedJobPromoter:
    """
    Background task that periodically moves delayed/retry jobs whose
    ready time has arrived into their waiting set.

    ``fetch_next`` also promotes on demand; the promoter keeps the
    waiting counts accurate while workers are idle.
    """

    def __init__(self, queue: MessageQueue, queue_names: tuple[str, ...], interval_seconds: float = 5):
        self.queue = queue
        self.queue_names = queue_names
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def promote_all(self) -> int:
        total = 0
        for name in self.queue_names:
            total += await self.queue.promote_delayed(name)
        return total

    async def _run(self):
        logger.info("delayed_promoter_started", interval=self.interval)
        while True:
            try:
                await self.promote_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("promoter_error", error=str(e))
            await asyncio.sleep(self.interval)
