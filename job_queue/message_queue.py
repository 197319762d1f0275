"""
Message Queue — Abstract job store with Redis and in-memory backends.

Per-queue topology (Redis keys, ``{prefix}:{queue}:...``):
  wait       — sorted set, score = priority * 10**12 + seq  (lowest pops first)
  delayed    — sorted set, score = ready_at_ms  (promoted into wait when due)
  active     — set of job ids currently held by a worker
  completed  — sorted set, score = finished_at_ms (trimmed to retention)
  failed     — sorted set, score = finished_at_ms (trimmed to retention)
  seq        — counter giving FIFO order within a priority

Each job lives in ``{prefix}:job:{job_id}`` as a JSON string.

Job lifecycle:
  add ──▶ waiting ──fetch──▶ active ──complete──▶ completed
    │        ▲                  │
    ▼        │ promote          └──fail──▶ delayed (backoff) ──▶ waiting
  delayed ───┘                         └─▶ failed (attempts exhausted)
"""
from __future__ import annotations

import heapq
import itertools
import json
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Optional

logger = structlog.get_logger()

_PRIORITY_SPAN = 10 ** 12


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

class JobState:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"

    ALL = (WAITING, ACTIVE, COMPLETED, FAILED, DELAYED)


@dataclass
class BackoffPolicy:
    type: str = "exponential"      # exponential | fixed
    delay_ms: int = 0

    def delay_for(self, attempts_made: int) -> int:
        """Delay before the retry that follows failure number ``attempts_made``."""
        if self.delay_ms <= 0:
            return 0
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * (2 ** max(attempts_made - 1, 0))


@dataclass
class QueueJob:
    """A unit of work on the queue."""
    queue: str
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: int = 3              # 1 = highest .. 4 = lowest
    attempts_made: int = 0
    max_attempts: int = 1
    backoff: Optional[BackoffPolicy] = None
    delay_ms: int = 0
    state: str = JobState.WAITING
    created_at_ms: int = 0
    ready_at_ms: int = 0
    processed_at_ms: Optional[int] = None
    finished_at_ms: Optional[int] = None
    failed_reason: str = ""
    result: Any = None
    seq: int = 0
    job_id: str = ""

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if isinstance(self.backoff, dict):
            self.backoff = BackoffPolicy(**self.backoff)
        if not 1 <= self.priority <= 4:
            raise ValueError(f"priority must be between 1 and 4, got {self.priority}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueJob:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_json(cls, raw: str) -> QueueJob:
        return cls.from_dict(json.loads(raw))

    @property
    def wait_score(self) -> int:
        return self.priority * _PRIORITY_SPAN + self.seq

    @property
    def duration_ms(self) -> Optional[int]:
        if self.processed_at_ms is None or self.finished_at_ms is None:
            return None
        return self.finished_at_ms - self.processed_at_ms

    def retry_delay_ms(self) -> int:
        return self.backoff.delay_for(self.attempts_made) if self.backoff else 0


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract job store. ``clock`` returns epoch milliseconds."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or _now_ms
        self._retention: dict[str, tuple[int, int]] = {}

    def now_ms(self) -> int:
        return self._clock()

    def set_retention(self, queue: str, completed: int, failed: int) -> None:
        """Keep at most ``completed``/``failed`` finished jobs for ``queue``."""
        self._retention[queue] = (completed, failed)

    def _retention_limit(self, queue: str, state: str) -> Optional[int]:
        limits = self._retention.get(queue)
        if limits is None:
            return None
        return limits[0] if state == JobState.COMPLETED else limits[1]

    # ── shared state transitions ─────────────────────────────

    def _prepare_new(self, job: QueueJob) -> None:
        now = self.now_ms()
        job.created_at_ms = job.created_at_ms or now
        job.ready_at_ms = now + max(job.delay_ms, 0)
        job.state = JobState.DELAYED if job.delay_ms > 0 else JobState.WAITING

    def _mark_active(self, job: QueueJob) -> None:
        job.state = JobState.ACTIVE
        job.processed_at_ms = self.now_ms()

    def _mark_completed(self, job: QueueJob, result: Any) -> None:
        job.state = JobState.COMPLETED
        job.result = result
        job.finished_at_ms = self.now_ms()

    def _mark_failure(self, job: QueueJob, error: BaseException | str) -> None:
        now = self.now_ms()
        job.attempts_made += 1
        job.failed_reason = str(error)
        if job.attempts_made < job.max_attempts:
            delay = job.retry_delay_ms()
            job.ready_at_ms = now + delay
            job.state = JobState.DELAYED if delay > 0 else JobState.WAITING
        else:
            job.state = JobState.FAILED
            job.finished_at_ms = now

    def _log_failure(self, job: QueueJob) -> None:
        if job.state == JobState.FAILED:
            logger.warning("job_moved_to_failed",
                           queue=job.queue,
                           job_id=job.job_id,
                           kind=job.kind,
                           attempts=job.attempts_made,
                           reason=job.failed_reason)
        else:
            logger.info("job_scheduled_for_retry",
                        queue=job.queue,
                        job_id=job.job_id,
                        attempt=job.attempts_made,
                        max_attempts=job.max_attempts,
                        ready_at_ms=job.ready_at_ms)

    # ── interface ────────────────────────────────────────────

    @abstractmethod
    async def connect(self):
        ...

    @abstractmethod
    async def close(self):
        ...

    @abstractmethod
    async def add(self, job: QueueJob) -> str:
        """Store a new job. A job id that already exists is not enqueued again."""
        ...

    @abstractmethod
    async def fetch_next(self, queue: str) -> Optional[QueueJob]:
        """Claim the next eligible job: lowest priority number, then oldest."""
        ...

    @abstractmethod
    async def complete(self, job: QueueJob, result: Any = None) -> None:
        ...

    @abstractmethod
    async def fail(self, job: QueueJob, error: BaseException | str) -> str:
        """Record a failed attempt. Returns the job's new state."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        ...

    @abstractmethod
    async def get_jobs(self, queue: str, state: str, limit: int = 50) -> list[QueueJob]:
        ...

    @abstractmethod
    async def get_counts(self, queue: str) -> dict[str, int]:
        ...

    @abstractmethod
    async def promote_delayed(self, queue: str) -> int:
        """Move delayed jobs whose ready time has passed into waiting."""
        ...

    @abstractmethod
    async def clean(self, queue: str, grace_ms: int, state: str = JobState.COMPLETED) -> int:
        """Purge finished jobs in ``state`` older than ``grace_ms``."""
        ...

    @abstractmethod
    async def requeue_active(self, queue: str, stalled_after_ms: int = 0) -> int:
        """
        Return jobs left active by a crashed process to waiting.

        Only jobs fetched at least ``stalled_after_ms`` ago are requeued, so
        a process starting next to live workers leaves their jobs alone.
        """
        ...

    def _is_stalled(self, job: QueueJob, stalled_after_ms: int) -> bool:
        started = job.processed_at_ms or 0
        return started <= self.now_ms() - stalled_after_ms

    def _log_requeued(self, queue: str, count: int) -> None:
        if count:
            logger.warning("stalled_jobs_requeued", queue=queue, count=count)


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisMessageQueue(MessageQueue):
    """
    Production queue backed by Redis sorted sets.

    Durable across process restarts. Several worker processes may share
    the same keys: ZPOPMIN hands each waiting job to exactly one of them,
    and moves out of the delayed and active sets are claimed with
    ZREM/SREM so only the caller that removed an id re-queues it.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "nyaya",
        clock: Optional[Callable[[], int]] = None,
        client=None,
    ):
        super().__init__(clock)
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._client = client
        self._redis = None

    def _key(self, queue: str, suffix: str) -> str:
        return f"{self._prefix}:{queue}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    async def connect(self):
        if self._client is not None:
            self._redis = self._client
        else:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
        await self._redis.ping()
        logger.info("redis_queue_connected", url=self._redis_url, prefix=self._prefix)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def add(self, job: QueueJob) -> str:
        job.seq = await self._redis.incr(self._key(job.queue, "seq"))
        self._prepare_new(job)
        created = await self._redis.set(self._job_key(job.job_id), job.to_json(), nx=True)
        if not created:
            logger.info("job_already_exists", queue=job.queue, job_id=job.job_id)
            return job.job_id

        if job.state == JobState.DELAYED:
            await self._redis.zadd(self._key(job.queue, "delayed"), {job.job_id: job.ready_at_ms})
        else:
            await self._redis.zadd(self._key(job.queue, "wait"), {job.job_id: job.wait_score})
        logger.info("job_published",
                    queue=job.queue,
                    job_id=job.job_id,
                    kind=job.kind,
                    priority=job.priority,
                    delay_ms=job.delay_ms)
        return job.job_id

    async def fetch_next(self, queue: str) -> Optional[QueueJob]:
        await self.promote_delayed(queue)
        popped = await self._redis.zpopmin(self._key(queue, "wait"), 1)
        if not popped:
            return None
        job_id, _score = popped[0]

        job = await self.get_job(job_id)
        if job is None:
            # Record purged while the id was still queued
            return None

        # Stamp the record before the id becomes visible in the active set
        self._mark_active(job)
        pipe = self._redis.pipeline()
        pipe.set(self._job_key(job_id), job.to_json())
        pipe.sadd(self._key(queue, "active"), job_id)
        await pipe.execute()
        return job

    async def complete(self, job: QueueJob, result: Any = None) -> None:
        self._mark_completed(job, result)
        pipe = self._redis.pipeline()
        pipe.srem(self._key(job.queue, "active"), job.job_id)
        pipe.set(self._job_key(job.job_id), job.to_json())
        pipe.zadd(self._key(job.queue, "completed"), {job.job_id: job.finished_at_ms})
        await pipe.execute()
        await self._trim(job.queue, JobState.COMPLETED)

    async def fail(self, job: QueueJob, error: BaseException | str) -> str:
        self._mark_failure(job, error)
        pipe = self._redis.pipeline()
        pipe.srem(self._key(job.queue, "active"), job.job_id)
        pipe.set(self._job_key(job.job_id), job.to_json())
        if job.state == JobState.DELAYED:
            pipe.zadd(self._key(job.queue, "delayed"), {job.job_id: job.ready_at_ms})
        elif job.state == JobState.WAITING:
            pipe.zadd(self._key(job.queue, "wait"), {job.job_id: job.wait_score})
        else:
            pipe.zadd(self._key(job.queue, "failed"), {job.job_id: job.finished_at_ms})
        await pipe.execute()
        self._log_failure(job)
        if job.state == JobState.FAILED:
            await self._trim(job.queue, JobState.FAILED)
        return job.state

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        raw = await self._redis.get(self._job_key(job_id))
        return QueueJob.from_json(raw) if raw else None

    async def _load_many(self, job_ids: list[str]) -> list[QueueJob]:
        if not job_ids:
            return []
        raws = await self._redis.mget([self._job_key(j) for j in job_ids])
        return [QueueJob.from_json(r) for r in raws if r]

    async def get_jobs(self, queue: str, state: str, limit: int = 50) -> list[QueueJob]:
        if state == JobState.ACTIVE:
            ids = list(await self._redis.smembers(self._key(queue, "active")))[:limit]
        else:
            suffix = "wait" if state == JobState.WAITING else state
            ids = await self._redis.zrange(self._key(queue, suffix), 0, limit - 1)
        return await self._load_many(ids)

    async def get_counts(self, queue: str) -> dict[str, int]:
        pipe = self._redis.pipeline()
        pipe.zcard(self._key(queue, "wait"))
        pipe.scard(self._key(queue, "active"))
        pipe.zcard(self._key(queue, "completed"))
        pipe.zcard(self._key(queue, "failed"))
        pipe.zcard(self._key(queue, "delayed"))
        waiting, active, completed, failed, delayed = await pipe.execute()
        return {
            "waiting": waiting,
            "active": active,
            "completed": completed,
            "failed": failed,
            "delayed": delayed,
        }

    async def promote_delayed(self, queue: str) -> int:
        now = self.now_ms()
        ready = await self._redis.zrangebyscore(self._key(queue, "delayed"), "-inf", now)
        promoted = 0
        for job_id in ready:
            # Another worker may have promoted (and even fetched) it already
            if not await self._redis.zrem(self._key(queue, "delayed"), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.state = JobState.WAITING
            pipe = self._redis.pipeline()
            pipe.set(self._job_key(job_id), job.to_json())
            pipe.zadd(self._key(queue, "wait"), {job_id: job.wait_score})
            await pipe.execute()
            promoted += 1

        if promoted:
            logger.debug("delayed_jobs_promoted", queue=queue, count=promoted)
        return promoted

    async def clean(self, queue: str, grace_ms: int, state: str = JobState.COMPLETED) -> int:
        key = self._key(queue, state)
        stale = await self._redis.zrangebyscore(key, "-inf", self.now_ms() - grace_ms)
        if not stale:
            return 0
        pipe = self._redis.pipeline()
        for job_id in stale:
            pipe.zrem(key, job_id)
            pipe.delete(self._job_key(job_id))
        await pipe.execute()
        logger.info("jobs_cleaned", queue=queue, state=state, count=len(stale))
        return len(stale)

    async def requeue_active(self, queue: str, stalled_after_ms: int = 0) -> int:
        ids = list(await self._redis.smembers(self._key(queue, "active")))
        stalled = [job for job in await self._load_many(ids) if self._is_stalled(job, stalled_after_ms)]
        requeued = 0
        for job in stalled:
            # A worker that finished the job meanwhile has already removed it
            if not await self._redis.srem(self._key(queue, "active"), job.job_id):
                continue
            job.state = JobState.WAITING
            pipe = self._redis.pipeline()
            pipe.set(self._job_key(job.job_id), job.to_json())
            pipe.zadd(self._key(queue, "wait"), {job.job_id: job.wait_score})
            await pipe.execute()
            requeued += 1
        self._log_requeued(queue, requeued)
        return requeued

    async def _trim(self, queue: str, state: str) -> None:
        limit = self._retention_limit(queue, state)
        if limit is None:
            return
        key = self._key(queue, state)
        count = await self._redis.zcard(key)
        if count <= limit:
            return
        oldest = await self._redis.zrange(key, 0, count - limit - 1)
        pipe = self._redis.pipeline()
        for job_id in oldest:
            pipe.zrem(key, job_id)
            pipe.delete(self._job_key(job_id))
        await pipe.execute()


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue backed by heaps.
    Single-process only, nothing survives a restart.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        super().__init__(clock)
        self._jobs: dict[str, QueueJob] = {}
        self._waiting: dict[str, list[tuple[int, str]]] = defaultdict(list)       # (score, id)
        self._delayed: dict[str, list[tuple[int, int, str]]] = defaultdict(list)  # (ready_at, seq, id)
        self._active: dict[str, set[str]] = defaultdict(set)
        self._finished: dict[str, dict[str, list[str]]] = defaultdict(
            lambda: {JobState.COMPLETED: [], JobState.FAILED: []}
        )
        self._seq = itertools.count(1)

    async def connect(self):
        logger.info("inmemory_queue_connected")

    async def close(self):
        pass

    def _enqueue(self, job: QueueJob) -> None:
        if job.state == JobState.DELAYED:
            heapq.heappush(self._delayed[job.queue], (job.ready_at_ms, job.seq, job.job_id))
        else:
            heapq.heappush(self._waiting[job.queue], (job.wait_score, job.job_id))

    async def add(self, job: QueueJob) -> str:
        if job.job_id in self._jobs:
            logger.info("job_already_exists", queue=job.queue, job_id=job.job_id)
            return job.job_id
        job.seq = next(self._seq)
        self._prepare_new(job)
        self._jobs[job.job_id] = job
        self._enqueue(job)
        logger.info("job_published",
                    queue=job.queue,
                    job_id=job.job_id,
                    kind=job.kind,
                    priority=job.priority,
                    delay_ms=job.delay_ms)
        return job.job_id

    async def fetch_next(self, queue: str) -> Optional[QueueJob]:
        await self.promote_delayed(queue)
        heap = self._waiting[queue]
        while heap:
            _score, job_id = heapq.heappop(heap)
            job = self._jobs.get(job_id)
            if job is None:
                continue
            self._mark_active(job)
            self._active[queue].add(job_id)
            return job
        return None

    async def complete(self, job: QueueJob, result: Any = None) -> None:
        self._mark_completed(job, result)
        self._active[job.queue].discard(job.job_id)
        self._jobs[job.job_id] = job
        self._finish(job)

    async def fail(self, job: QueueJob, error: BaseException | str) -> str:
        self._mark_failure(job, error)
        self._active[job.queue].discard(job.job_id)
        self._jobs[job.job_id] = job
        if job.state == JobState.FAILED:
            self._finish(job)
        else:
            self._enqueue(job)
        self._log_failure(job)
        return job.state

    def _finish(self, job: QueueJob) -> None:
        ids = self._finished[job.queue][job.state]
        ids.append(job.job_id)
        limit = self._retention_limit(job.queue, job.state)
        if limit is not None:
            while len(ids) > limit:
                self._jobs.pop(ids.pop(0), None)

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        return self._jobs.get(job_id)

    async def get_jobs(self, queue: str, state: str, limit: int = 50) -> list[QueueJob]:
        if state == JobState.WAITING:
            ids = [job_id for _, job_id in sorted(self._waiting[queue])]
        elif state == JobState.DELAYED:
            ids = [job_id for _, _, job_id in sorted(self._delayed[queue])]
        elif state == JobState.ACTIVE:
            ids = list(self._active[queue])
        else:
            ids = list(self._finished[queue][state])
        return [self._jobs[j] for j in ids[:limit] if j in self._jobs]

    async def get_counts(self, queue: str) -> dict[str, int]:
        return {
            "waiting": len(self._waiting[queue]),
            "active": len(self._active[queue]),
            "completed": len(self._finished[queue][JobState.COMPLETED]),
            "failed": len(self._finished[queue][JobState.FAILED]),
            "delayed": len(self._delayed[queue]),
        }

    async def promote_delayed(self, queue: str) -> int:
        now = self.now_ms()
        heap = self._delayed[queue]
        promoted = 0
        while heap and heap[0][0] <= now:
            _, _, job_id = heapq.heappop(heap)
            job = self._jobs.get(job_id)
            if job is None:
                continue
            job.state = JobState.WAITING
            heapq.heappush(self._waiting[queue], (job.wait_score, job_id))
            promoted += 1
        if promoted:
            logger.debug("delayed_jobs_promoted", queue=queue, count=promoted)
        return promoted

    async def clean(self, queue: str, grace_ms: int, state: str = JobState.COMPLETED) -> int:
        cutoff = self.now_ms() - grace_ms
        ids = self._finished[queue][state]
        stale = [j for j in ids if (self._jobs[j].finished_at_ms or 0) < cutoff]
        for job_id in stale:
            ids.remove(job_id)
            self._jobs.pop(job_id, None)
        if stale:
            logger.info("jobs_cleaned", queue=queue, state=state, count=len(stale))
        return len(stale)

    async def requeue_active(self, queue: str, stalled_after_ms: int = 0) -> int:
        stalled = [job_id for job_id in self._active[queue]
                   if self._is_stalled(self._jobs[job_id], stalled_after_ms)]
        for job_id in stalled:
            job = self._jobs[job_id]
            job.state = JobState.WAITING
            self._active[queue].discard(job_id)
            heapq.heappush(self._waiting[queue], (job.wait_score, job_id))
        self._log_requeued(queue, len(stalled))
        return len(stalled)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_message_queue(
    queue_config: dict[str, Any] = None,
    clock: Optional[Callable[[], int]] = None,
) -> MessageQueue:
    """Create the configured queue backend. Callers own the returned instance."""
    config = queue_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        return RedisMessageQueue(
            redis_url=config.get("redis_url", "redis://localhost:6379"),
            key_prefix=config.get("key_prefix", "nyaya"),
            clock=clock,
        )
    return InMemoryMessageQueue(clock=clock)
