"""
Job queue — durable, priority-ordered background work.

Four named queues (sos-dispatch, notifications, case-sync, report-triage)
backed by Redis in production or an in-process store for development.
``job_queue.scheduler.JobScheduler`` wires the pieces together.
"""
from job_queue.errors import (
    JobError, UnknownJobKindError, RecordNotFoundError, DispatchError,
    NotificationDeliveryError, CaseSyncError,
)
from job_queue.message_queue import (
    JobState, BackoffPolicy, QueueJob, MessageQueue,
    RedisMessageQueue, InMemoryMessageQueue, create_message_queue,
)
from job_queue.payloads import Queues, JobKind, KIND_QUEUE, kinds_for_queue, parse_payload
from job_queue.producer import JobProducer, priority_weight
from job_queue.consumer import QueueConsumer, DelayedJobPromoter
from job_queue.health import get_queue_stats, check_job_system_health

__all__ = [
    "JobError", "UnknownJobKindError", "RecordNotFoundError", "DispatchError",
    "NotificationDeliveryError", "CaseSyncError",
    "JobState", "BackoffPolicy", "QueueJob", "MessageQueue",
    "RedisMessageQueue", "InMemoryMessageQueue", "create_message_queue",
    "Queues", "JobKind", "KIND_QUEUE", "kinds_for_queue", "parse_payload",
    "JobProducer", "priority_weight",
    "QueueConsumer", "DelayedJobPromoter",
    "get_queue_stats", "check_job_system_health",
]
