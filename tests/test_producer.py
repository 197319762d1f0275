"""Tests for the job producer: payload validation and per-kind defaults."""
import pytest
from pydantic import ValidationError

from job_queue.message_queue import JobState
from job_queue.payloads import (
    CaseSyncPayload, JobKind, NotificationPayload, Queues, ReportTriagePayload,
    SosDispatchPayload, kinds_for_queue, parse_payload,
)
from job_queue.errors import UnknownJobKindError
from job_queue.producer import priority_weight
from models.schemas import Location, SosPriority, UserContact


def _sos_payload(priority=SosPriority.CRITICAL) -> SosDispatchPayload:
    return SosDispatchPayload(
        incident_id="sos_1",
        location=Location(lat=28.6139, lng=77.2090, address="Connaught Place, New Delhi"),
        description="Assault in progress",
        priority=priority,
        user_contact=UserContact(email="asha.verma@example.in", phone="+919812345678"),
    )


class TestPriorityWeight:
    @pytest.mark.parametrize("priority,weight", [
        (SosPriority.CRITICAL, 1),
        (SosPriority.HIGH, 2),
        (SosPriority.MEDIUM, 3),
        (SosPriority.LOW, 4),
        ("SOMETHING_ELSE", 3),
    ])
    def test_weights(self, priority, weight):
        assert priority_weight(priority) == weight


class TestKindBinding:
    def test_every_kind_has_one_queue(self):
        covered = set()
        for name in Queues.ALL:
            kinds = kinds_for_queue(name)
            assert kinds, name
            assert not covered & kinds
            covered |= kinds
        assert covered == set(JobKind)

    def test_unknown_kind(self):
        with pytest.raises(UnknownJobKindError):
            parse_payload("send-fax", {})

    @pytest.mark.asyncio
    async def test_kind_on_wrong_queue_rejected(self, producer):
        with pytest.raises(ValueError):
            await producer.enqueue(Queues.CASE_SYNC, JobKind.SEND_NOTIFICATION,
                                   {"user_id": "u1", "template": "case-update"})

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected_before_write(self, producer, queue):
        with pytest.raises(ValidationError):
            await producer.enqueue(Queues.NOTIFICATIONS, JobKind.SEND_NOTIFICATION, {"template": "x"})
        assert (await queue.get_counts(Queues.NOTIFICATIONS))["waiting"] == 0


class TestTypedHelpers:
    @pytest.mark.asyncio
    async def test_sos_dispatch_defaults(self, producer, queue):
        job_id = await producer.schedule_sos_dispatch(_sos_payload(SosPriority.HIGH))
        job = await queue.get_job(job_id)
        assert job.queue == Queues.SOS_DISPATCH
        assert job.kind == "dispatch-sos"
        assert job.priority == 2
        assert job.max_attempts == 3
        assert (job.backoff.type, job.backoff.delay_ms) == ("exponential", 5000)
        assert job.payload["user_contact"]["email"] == "asha.verma@example.in"
        assert "kind" not in job.payload

    @pytest.mark.asyncio
    async def test_critical_sos_jumps_the_queue(self, producer, queue):
        await producer.schedule_sos_dispatch(_sos_payload(SosPriority.LOW))
        critical = await producer.schedule_sos_dispatch(_sos_payload(SosPriority.CRITICAL))
        assert (await queue.fetch_next(Queues.SOS_DISPATCH)).job_id == critical

    @pytest.mark.asyncio
    async def test_notification_defaults(self, producer, queue):
        job_id = await producer.schedule_notification(
            NotificationPayload(user_id="u1", template="sos-status-update", data={"status": "RESOLVED"}),
        )
        job = await queue.get_job(job_id)
        assert job.max_attempts == 3
        assert job.backoff.delay_ms == 2000
        assert job.payload["channel"] == "email"

    @pytest.mark.asyncio
    async def test_notification_with_explicit_id_is_deduplicated(self, producer, queue):
        payload = NotificationPayload(user_id="u1", template="case-update")
        await producer.schedule_notification(payload, job_id="case-update:c1:f00:u1")
        await producer.schedule_notification(payload, job_id="case-update:c1:f00:u1")
        assert (await queue.get_counts(Queues.NOTIFICATIONS))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_case_sync_defaults(self, producer, queue):
        job = await queue.get_job(await producer.schedule_case_sync(CaseSyncPayload(case_id="c1")))
        assert job.max_attempts == 2
        assert job.backoff.delay_ms == 10000

    @pytest.mark.asyncio
    async def test_batch_case_sync_is_delayed_single_attempt(self, producer, queue, clock):
        job = await queue.get_job(await producer.schedule_batch_case_sync(["c1", "c2"]))
        assert job.max_attempts == 1
        assert job.state == JobState.DELAYED
        assert job.ready_at_ms == clock.ms + 60000
        assert job.payload["case_ids"] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_report_triage_defaults(self, producer, queue, clock):
        job = await queue.get_job(await producer.schedule_report_triage(
            ReportTriagePayload(report_id="r1", department="Police"),
        ))
        assert job.max_attempts == 2
        assert job.backoff.delay_ms == 5000
        assert job.ready_at_ms == clock.ms + 5000

    @pytest.mark.asyncio
    async def test_maintenance_jobs(self, producer, queue):
        daily = await queue.get_job(await producer.schedule_daily_case_sync(job_id="daily-case-sync:2025-03-10"))
        cleanup = await queue.get_job(await producer.schedule_cleanup(grace_days=3))
        assert daily.job_id == "daily-case-sync:2025-03-10"
        assert daily.queue == Queues.CASE_SYNC
        assert cleanup.queue == Queues.NOTIFICATIONS
        assert cleanup.payload == {"grace_days": 3}
