"""
Email Channel Adapter — SMTP email with NyayaMitra templates.

Provides:
- SMTP send (HTML + plain text alternative) through aiosmtplib
- Simulated send when no SMTP host is configured (development)
- Template rendering for the notification templates
- Suppression list for permanent bounces
"""
from __future__ import annotations

import html
import uuid
import structlog
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Optional

import aiosmtplib

from models.schemas import NotificationChannel, User
from channels.base import ChannelAdapter

logger = structlog.get_logger()


def _now_text() -> str:
    return datetime.now(timezone.utc).strftime("%d %b %Y, %H:%M UTC")


def _date_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%d %b %Y")
        except ValueError:
            return value
    return ""


class EmailAdapter(ChannelAdapter):
    """
    Email adapter with suppression and SMTP transport.

    Without ``smtp_host`` in the channel credentials the adapter logs the
    message and reports ``status="simulated"``.
    """

    channel_type = NotificationChannel.EMAIL

    def __init__(self):
        super().__init__()
        self._suppressed: set[str] = set()
        self._from_email: str = "noreply@nyayamitra.in"
        self._from_name: str = "NyayaMitra"
        self._smtp_host: str = ""
        self._smtp_port: int = 587

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._from_email = config.get("from_email") or self._from_email
        self._from_name = config.get("from_name") or self._from_name
        self._smtp_host = config.get("smtp_host", "")
        self._smtp_port = int(config.get("smtp_port") or 587)
        self._initialized = True

    def get_address(self, user: User) -> Optional[str]:
        return user.email or None

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(
        self, address: str, content: str, metadata: dict[str, Any]
    ) -> dict[str, Any]:
        if self.is_suppressed(address):
            return {"status": "failed", "error": f"Suppressed: {address}"}

        subject = metadata.get("subject", "NyayaMitra Notification")
        domain = self._from_email.split("@")[-1]
        message_id = f"<{uuid.uuid4().hex}@{domain}>"

        if not self._smtp_host:
            logger.info("email_simulated", to=address, subject=subject, message_id=message_id)
            return {"status": "simulated", "channel_message_id": message_id, "to": address, "subject": subject}

        msg = EmailMessage()
        msg["From"] = f"{self._from_name} <{self._from_email}>"
        msg["To"] = address
        msg["Subject"] = subject
        msg["Message-ID"] = message_id
        msg.set_content(content)
        if metadata.get("html"):
            msg.add_alternative(metadata["html"], subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=self._smtp_host,
            port=self._smtp_port,
            username=self._config.get("username") or None,
            password=self._config.get("password") or None,
            start_tls=self._smtp_port == 587,
        )
        logger.info("email_sent", to=address, subject=subject, message_id=message_id)
        return {"status": "sent", "channel_message_id": message_id, "to": address, "subject": subject}

    async def send_template(self, user: User, template_name: str, template_data: dict[str, Any],
                            metadata: dict[str, Any] = None) -> dict[str, Any]:
        subject, text = self._render_template(template_name, template_data)
        html_body = self._render_html(template_name, template_data)
        return await self.send_message(
            user, text,
            {**(metadata or {}), "subject": subject, "html": html_body, "template": template_name},
        )

    # ── Suppression ───────────────────────────────────────────

    def is_suppressed(self, email: str) -> bool:
        return email.lower() in self._suppressed

    async def handle_bounce(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email", "").lower()
        bounce_type = data.get("type", "transient")
        if bounce_type == "permanent":
            self._suppressed.add(email)
            logger.warning("permanent_bounce_suppressed", email=email)
        else:
            logger.info("transient_bounce", email=email)
        return {"status": "processed", "email": email, "type": bounce_type}

    # ── Template rendering ────────────────────────────────────

    def _render_template(self, name: str, data: dict[str, Any]) -> tuple[str, str]:
        """Returns (subject, plain-text body) for known templates."""
        user_name = data.get("userName", "there")
        sign_off = "Best regards,\nNyayaMitra Team"

        if name == "sos-status-update":
            return (
                f"SOS Incident Update - {data.get('status', '')}",
                f"SOS Incident Update - {data.get('status', '')}\n\n"
                f"Dear {user_name},\n\n"
                f"Your SOS incident {data.get('incidentId', '')} has been updated to status: "
                f"{data.get('status', '')}\n\n"
                f"Updated: {_now_text()}\n\n"
                f"If you need immediate assistance, please contact emergency services directly.\n\n"
                f"{sign_off}",
            )
        if name == "report-status-update":
            resolution = data.get("resolution")
            return (
                f"Corruption Report Update - {data.get('status', '')}",
                f"Corruption Report Update - {data.get('status', '')}\n\n"
                f"Dear {user_name},\n\n"
                f"Your corruption report \"{data.get('title', '')}\" has been updated to status: "
                f"{data.get('status', '')}\n\n"
                + (f"Resolution: {resolution}\n" if resolution else "")
                + f"Updated: {_now_text()}\n\n"
                f"Thank you for your contribution to fighting corruption.\n\n"
                f"{sign_off}",
            )
        if name == "case-update":
            return (
                f"Case Update - {data.get('caseNumber', '')}",
                f"Case Update - {data.get('caseNumber', '')}\n\n"
                f"Dear {user_name},\n\n"
                f"A case you are following has been updated:\n\n"
                f"Case: {data.get('caseNumber', '')} - {data.get('title', '')}\n"
                f"Update: {data.get('eventTitle', '')}\n"
                f"Date: {_date_text(data.get('eventDate'))}\n\n"
                f"You can view the full details in your NyayaMitra dashboard.\n\n"
                f"{sign_off}",
            )
        if name == "high-priority-report":
            return (
                f"High Priority Corruption Report - {data.get('title', '')}",
                f"High Priority Corruption Report\n\n"
                f"Dear {data.get('moderatorName') or user_name},\n\n"
                f"A corruption report has been triaged as {data.get('priority', 'HIGH')} priority "
                f"and needs attention:\n\n"
                f"Report: {data.get('title', '')}\n"
                f"Department: {data.get('department', '')}\n"
                f"Report ID: {data.get('reportId', '')}\n"
                f"Reasoning: {data.get('reasoning', '')}\n\n"
                f"{sign_off}",
            )
        return ("NyayaMitra Notification", "You have a new notification from NyayaMitra.")

    def _render_html(self, name: str, data: dict[str, Any]) -> str:
        subject, text = self._render_template(name, data)
        if name not in ("sos-status-update", "report-status-update", "case-update", "high-priority-report"):
            return "<p>You have a new notification from NyayaMitra.</p>"
        paragraphs = "".join(
            f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in text.split("\n\n")[1:]
        )
        return f"<h2>{html.escape(subject)}</h2>{paragraphs}"
