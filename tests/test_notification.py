"""Tests for the notification handler."""
import pytest
from unittest.mock import AsyncMock

from handlers.notification import send_notification
from job_queue.errors import NotificationDeliveryError, RecordNotFoundError
from job_queue.message_queue import QueueJob
from job_queue.payloads import NotificationPayload, Queues
from models.schemas import NotificationChannel, User


def _job(job_id="job_n1") -> QueueJob:
    return QueueJob(queue=Queues.NOTIFICATIONS, kind="send-notification", job_id=job_id, max_attempts=3)


def _payload(channel=NotificationChannel.EMAIL, template="sos-status-update", **data) -> NotificationPayload:
    return NotificationPayload(user_id="u_citizen", channel=channel, template=template,
                               data=data or {"incidentId": "sos_42", "status": "RESOLVED"})


class TestSendNotification:
    @pytest.mark.asyncio
    async def test_email_simulated_without_smtp(self, ctx, store, citizen):
        await store.upsert_user(citizen)
        result = await send_notification(ctx, _job(), _payload())
        assert result.status == "simulated"
        assert result.channel == "email"
        assert result.message_id
        assert await store.has_delivery("job_n1")

    @pytest.mark.asyncio
    async def test_sms_uses_phone(self, ctx, store, citizen):
        await store.upsert_user(citizen)
        result = await send_notification(ctx, _job(), _payload(channel=NotificationChannel.SMS))
        assert result.channel == "sms"
        assert result.status == "simulated"

    @pytest.mark.asyncio
    async def test_sms_without_phone_fails(self, ctx, store):
        await store.upsert_user(User(id="u_citizen", email="no.phone@example.in"))
        with pytest.raises(NotificationDeliveryError):
            await send_notification(ctx, _job(), _payload(channel=NotificationChannel.SMS))
        assert not await store.has_delivery("job_n1")

    @pytest.mark.asyncio
    async def test_missing_user(self, ctx):
        with pytest.raises(RecordNotFoundError):
            await send_notification(ctx, _job(), _payload())

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self, ctx, store, channels, citizen):
        await store.upsert_user(citizen)
        adapter = channels.get(NotificationChannel.EMAIL)
        adapter.send_template = AsyncMock(return_value={"status": "failed", "error": "550 mailbox unavailable"})

        with pytest.raises(NotificationDeliveryError, match="550"):
            await send_notification(ctx, _job(), _payload())

    @pytest.mark.asyncio
    async def test_retried_job_does_not_send_twice(self, ctx, store, channels, citizen):
        await store.upsert_user(citizen)
        adapter = channels.get(NotificationChannel.EMAIL)
        adapter.send_template = AsyncMock(return_value={"status": "sent", "channel_message_id": "<m1@x>"})

        first = await send_notification(ctx, _job(), _payload())
        second = await send_notification(ctx, _job(), _payload())

        assert first.status == "sent"
        assert second.status == "duplicate"
        assert adapter.send_template.await_count == 1

    @pytest.mark.asyncio
    async def test_user_name_filled_in(self, ctx, store, channels, citizen):
        await store.upsert_user(citizen)
        adapter = channels.get(NotificationChannel.EMAIL)
        adapter.send_template = AsyncMock(return_value={"status": "sent"})

        await send_notification(ctx, _job(), _payload())

        _, template, data, _ = adapter.send_template.await_args.args
        assert template == "sos-status-update"
        assert data["userName"] == "Asha Verma"
        assert data["status"] == "RESOLVED"
