"""Tests for the SOS dispatch handler."""
import pytest

from handlers.sos_dispatch import SERVICE_TIERS, dispatch_sos, services_for
from job_queue.consumer import QueueConsumer
from job_queue.errors import DispatchError, RecordNotFoundError
from job_queue.message_queue import JobState, QueueJob
from job_queue.payloads import JobKind, Queues, SosDispatchPayload
from models.schemas import Location, SosIncident, SosPriority, SosStatus, UserContact

LOCATION = Location(lat=19.0760, lng=72.8777, address="Dadar Station, Mumbai")


def _incident(priority=SosPriority.CRITICAL, status=SosStatus.PENDING) -> SosIncident:
    return SosIncident(
        id="sos_42",
        user_id="u_citizen",
        location=LOCATION,
        description="Being followed by a group of men",
        priority=priority,
        status=status,
    )


def _payload(priority=SosPriority.CRITICAL) -> SosDispatchPayload:
    return SosDispatchPayload(
        incident_id="sos_42",
        location=LOCATION,
        description="Being followed by a group of men",
        priority=priority,
        user_contact=UserContact(email="asha.verma@example.in", phone="+919812345678"),
    )


def _job(attempts_made=0) -> QueueJob:
    return QueueJob(queue=Queues.SOS_DISPATCH, kind="dispatch-sos", attempts_made=attempts_made,
                    max_attempts=3)


class TestServiceTiers:
    @pytest.mark.parametrize("priority,expected", [
        (SosPriority.CRITICAL, ("Police", "Medical", "Fire Department")),
        (SosPriority.HIGH, ("Police", "Medical", "Fire Department")),
        (SosPriority.MEDIUM, ("Police",)),
        (SosPriority.LOW, ("Local Security",)),
    ])
    def test_tier(self, priority, expected):
        assert services_for(priority) == expected

    def test_every_priority_has_a_tier(self):
        assert set(SERVICE_TIERS) == set(SosPriority)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success_acknowledges_incident(self, ctx, store, emergency):
        await store.create_sos_incident(_incident())

        result = await dispatch_sos(ctx, _job(), _payload())

        assert result.services_notified == ["Police", "Medical", "Fire Department"]
        assert [s for s, _ in emergency.calls] == ["Police", "Medical", "Fire Department"]
        assert (await store.get_sos_incident("sos_42")).status == SosStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_low_priority_only_local_security(self, ctx, store, emergency):
        await store.create_sos_incident(_incident(SosPriority.LOW))
        result = await dispatch_sos(ctx, _job(), _payload(SosPriority.LOW))
        assert result.services_notified == ["Local Security"]
        assert len(emergency.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_reverts_to_pending_and_raises(self, ctx, store, emergency):
        await store.create_sos_incident(_incident(status=SosStatus.ACKNOWLEDGED))
        emergency.fail_services = {"Medical"}

        with pytest.raises(DispatchError):
            await dispatch_sos(ctx, _job(), _payload())

        assert (await store.get_sos_incident("sos_42")).status == SosStatus.PENDING
        assert await store.get_dispatched_services("sos_42") == {"Police"}

    @pytest.mark.asyncio
    async def test_retry_skips_services_already_reached(self, ctx, store, emergency):
        await store.create_sos_incident(_incident())
        emergency.fail_services = {"Fire Department"}
        with pytest.raises(DispatchError):
            await dispatch_sos(ctx, _job(), _payload())

        emergency.fail_services = set()
        emergency.calls.clear()
        result = await dispatch_sos(ctx, _job(attempts_made=1), _payload())

        assert [s for s, _ in emergency.calls] == ["Fire Department"]
        assert result.services_notified == ["Fire Department"]
        assert result.services_skipped == ["Police", "Medical"]
        assert (await store.get_sos_incident("sos_42")).status == SosStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_failure_does_not_undo_moderator_progress(self, ctx, store, emergency):
        await store.create_sos_incident(_incident(status=SosStatus.IN_PROGRESS))
        emergency.fail_services = {"Police"}

        with pytest.raises(DispatchError):
            await dispatch_sos(ctx, _job(), _payload())

        assert (await store.get_sos_incident("sos_42")).status == SosStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_success_does_not_regress_later_status(self, ctx, store):
        await store.create_sos_incident(_incident(status=SosStatus.RESOLVED))
        await dispatch_sos(ctx, _job(), _payload())
        assert (await store.get_sos_incident("sos_42")).status == SosStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_missing_incident(self, ctx, emergency):
        with pytest.raises(RecordNotFoundError):
            await dispatch_sos(ctx, _job(), _payload())
        assert emergency.calls == []


class TestExhaustedRetries:
    @pytest.mark.asyncio
    async def test_incident_left_pending_after_three_failures(self, ctx, store, emergency, queue, producer, clock):
        from functools import partial
        await store.create_sos_incident(_incident())
        emergency.fail_services = {"Police"}
        consumer = QueueConsumer(queue, Queues.SOS_DISPATCH, {JobKind.DISPATCH_SOS: partial(dispatch_sos, ctx)})
        job_id = await producer.schedule_sos_dispatch(_payload())

        for _ in range(3):
            assert await consumer.process_next() is not None
            clock.advance(60_000)

        job = await queue.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts_made == 3
        assert (await store.get_sos_incident("sos_42")).status == SosStatus.PENDING
