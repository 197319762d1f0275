"""Collaborators shared by every job handler."""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from backend.case_records import CaseRecordSource
from backend.emergency import EmergencyGateway
from channels.base import ChannelRegistry
from config.settings import TriageConfig
from database.store_base import BaseStore
from job_queue.message_queue import MessageQueue
from job_queue.producer import JobProducer


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HandlerContext:
    store: BaseStore
    producer: JobProducer
    channels: ChannelRegistry
    case_source: CaseRecordSource
    emergency: EmergencyGateway
    queue: MessageQueue
    triage: TriageConfig = field(default_factory=TriageConfig)
    cleanup_grace_days: int = 7
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = _utcnow
