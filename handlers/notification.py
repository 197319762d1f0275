"""
Notification — Deliver one templated message to one user over one channel.

The job id is the idempotency key: once a delivery is logged under it,
a re-run of the same job reports the earlier delivery instead of sending
again.
"""
from __future__ import annotations

import structlog
from pydantic import BaseModel

from channels.base import SUCCESS_STATUSES
from handlers.context import HandlerContext
from job_queue.errors import NotificationDeliveryError, RecordNotFoundError
from job_queue.message_queue import QueueJob
from job_queue.payloads import NotificationPayload

logger = structlog.get_logger()


class NotificationResult(BaseModel):
    user_id: str
    channel: str
    template: str
    status: str
    message_id: str = ""


async def send_notification(ctx: HandlerContext, job: QueueJob, payload: NotificationPayload) -> NotificationResult:
    channel = payload.channel.value

    if await ctx.store.has_delivery(job.job_id):
        logger.info("notification_already_delivered", job_id=job.job_id, user_id=payload.user_id)
        return NotificationResult(user_id=payload.user_id, channel=channel,
                                  template=payload.template, status="duplicate")

    user = await ctx.store.get_user(payload.user_id)
    if user is None:
        raise RecordNotFoundError("User", payload.user_id)

    adapter = ctx.channels.get(payload.channel)
    if adapter is None:
        raise NotificationDeliveryError(channel, user.id, "channel not configured")

    data = {"userName": user.full_name or user.email, **payload.data}
    result = await adapter.send_template(user, payload.template, data, {"message_id": job.job_id})
    if result.get("status") not in SUCCESS_STATUSES:
        raise NotificationDeliveryError(channel, user.id, result.get("error") or result.get("status", ""))

    message_id = result.get("channel_message_id", "")
    await ctx.store.record_delivery(job.job_id, user.id, channel, payload.template, message_id)
    logger.info("notification_delivered",
                job_id=job.job_id,
                user_id=user.id,
                channel=channel,
                template=payload.template)
    return NotificationResult(user_id=user.id, channel=channel, template=payload.template,
                              status=result["status"], message_id=message_id)
