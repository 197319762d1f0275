"""Shared test fixtures for the NyayaMitra job pipeline."""
import random
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from backend.case_records import MockCaseRecordSource
from backend.emergency import MockEmergencyGateway
from channels import ChannelRegistry, EmailAdapter, SMSAdapter
from config.settings import TriageConfig
from database.store_memory import InMemoryStore
from handlers.context import HandlerContext
from job_queue.message_queue import InMemoryMessageQueue
from job_queue.producer import JobProducer
from models.schemas import User, UserRole

NOW = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


class FakeClock:
    """Millisecond clock for the queue store; advanced by hand."""

    def __init__(self, start_ms: int = NOW_MS):
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def advance(self, ms: int):
        self.ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock) -> InMemoryMessageQueue:
    return InMemoryMessageQueue(clock=clock)


@pytest.fixture
def producer(queue) -> JobProducer:
    return JobProducer(queue)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def case_source() -> MockCaseRecordSource:
    return MockCaseRecordSource(generate_missing=False)


@pytest.fixture
def emergency() -> MockEmergencyGateway:
    return MockEmergencyGateway()


@pytest_asyncio.fixture
async def channels() -> ChannelRegistry:
    registry = ChannelRegistry()
    registry.register(EmailAdapter())
    registry.register(SMSAdapter())
    await registry.initialize_all({})
    return registry


@pytest.fixture
def ctx(store, producer, channels, case_source, emergency, queue) -> HandlerContext:
    return HandlerContext(
        store=store,
        producer=producer,
        channels=channels,
        case_source=case_source,
        emergency=emergency,
        queue=queue,
        triage=TriageConfig(),
        rng=random.Random(7),
        clock=lambda: NOW,
    )


# ── Users ─────────────────────────────────────────────────────

@pytest.fixture
def citizen() -> User:
    return User(
        id="u_citizen",
        email="asha.verma@example.in",
        phone="+919812345678",
        first_name="Asha",
        last_name="Verma",
        role=UserRole.CITIZEN,
    )


@pytest.fixture
def moderators() -> list[User]:
    return [
        User(id="mod_a", email="mod.a@nyayamitra.in", first_name="Ravi", last_name="Iyer",
             role=UserRole.MODERATOR),
        User(id="mod_b", email="mod.b@nyayamitra.in", first_name="Meera", last_name="Nair",
             role=UserRole.MODERATOR),
        User(id="mod_c", email="mod.c@nyayamitra.in", first_name="Kabir", last_name="Shah",
             role=UserRole.MODERATOR),
    ]


@pytest.fixture
def admin() -> User:
    return User(id="admin_1", email="admin@nyayamitra.in", first_name="Anita", last_name="Rao",
                role=UserRole.ADMIN)


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)
