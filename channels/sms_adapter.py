"""
SMS Channel Adapter — Twilio REST messaging.

Provides:
- GSM-7 vs Unicode detection for accurate segment counting
- Automatic message truncation to max segment limit
- Twilio Messages API send (httpx + tenacity) when credentials are set
- Simulated send otherwise (development)
"""
from __future__ import annotations

import re
import uuid
import structlog
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models.schemas import NotificationChannel, User
from channels.base import ChannelAdapter

logger = structlog.get_logger()

TWILIO_API = "https://api.twilio.com/2010-04-01"


# ══════════════════════════════════════════════════════════════
#  GSM-7 CHARACTER SET & SEGMENT COUNTING
# ══════════════════════════════════════════════════════════════

# GSM-7 basic character set (includes space, digits, common punctuation, Latin letters)
_GSM7_CHARS = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)

# Extended GSM-7 (takes 2 bytes each): ^{}[~]|\€
_GSM7_EXTENDED = set("^{}[]~|\\€")


def _is_gsm7(text: str) -> bool:
    return all(c in _GSM7_CHARS or c in _GSM7_EXTENDED for c in text)


def _segment_count(text: str) -> int:
    """
    Calculate SMS segment count based on encoding.

    GSM-7: 160 chars single / 153 chars per segment (7 chars for UDH header)
    Unicode: 70 chars single / 67 chars per segment
    """
    if not text:
        return 0

    if _is_gsm7(text):
        char_count = sum(2 if c in _GSM7_EXTENDED else 1 for c in text)
        if char_count <= 160:
            return 1
        return (char_count + 152) // 153
    else:
        if len(text) <= 70:
            return 1
        return (len(text) + 66) // 67


def _date_text(value: Any) -> str:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%d %b %Y")
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return ""


# ══════════════════════════════════════════════════════════════
#  SMS ADAPTER
# ══════════════════════════════════════════════════════════════

class SMSAdapter(ChannelAdapter):
    """
    SMS adapter with segment awareness.

    Truncates messages to stay within ``max_segments``. Sends through the
    Twilio Messages API when ``account_sid``, ``auth_token`` and
    ``from_number`` are configured.
    """

    channel_type = NotificationChannel.SMS

    def __init__(self):
        super().__init__()
        self._from_number: str = ""
        self._account_sid: str = ""
        self._auth_token: str = ""
        self._max_segments: int = 3
        self.client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._from_number = config.get("from_number", "")
        self._account_sid = config.get("account_sid", "")
        self._auth_token = config.get("auth_token", "")
        self._max_segments = int(config.get("max_segments") or 3)
        self._initialized = True

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    def get_address(self, user: User) -> Optional[str]:
        return user.phone or None

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(
        self, address: str, content: str, metadata: dict[str, Any]
    ) -> dict[str, Any]:
        content = self._truncate_to_segments(content, self._max_segments)
        segments = _segment_count(content)

        if not self.configured:
            msg_sid = f"SM{uuid.uuid4().hex[:32]}"
            logger.info("sms_simulated", to=address, segments=segments, msg_sid=msg_sid)
            return {"status": "simulated", "channel_message_id": msg_sid, "segments": segments, "to": address}

        data = await self._post_message(address, content)
        if data.get("status") == "failed" or data.get("error_code"):
            return {"status": "failed", "error": data.get("error_message") or "twilio rejected message"}

        logger.info("sms_sent", to=address, segments=segments, msg_sid=data.get("sid"))
        return {"status": "sent", "channel_message_id": data.get("sid", ""), "segments": segments, "to": address}

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=TWILIO_API,
                auth=(self._account_sid, self._auth_token),
                timeout=15.0,
            )
        return self.client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_message(self, to: str, body: str) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(
            f"/Accounts/{self._account_sid}/Messages.json",
            data={"From": self._from_number, "To": to, "Body": body},
        )
        response.raise_for_status()
        return response.json()

    async def shutdown(self) -> None:
        if self.client:
            await self.client.aclose()

    # ── Truncation ────────────────────────────────────────────

    def _truncate_to_segments(self, content: str, max_segments: int) -> str:
        if _segment_count(content) <= max_segments:
            return content

        if _is_gsm7(content):
            max_chars = 153 * max_segments - 3  # space for "..."
        else:
            max_chars = 67 * max_segments - 3

        return content[:max_chars] + "..."

    # ── Templates ─────────────────────────────────────────────

    def _render_template(self, name: str, data: dict[str, Any]) -> tuple[str, str]:
        now = datetime.now(timezone.utc).strftime("%d %b %Y, %H:%M UTC")
        if name == "sos-status-update":
            body = (f"NyayaMitra: Your SOS incident {data.get('incidentId', '')} status updated "
                    f"to {data.get('status', '')}. Updated: {now}")
        elif name == "report-status-update":
            resolution = data.get("resolution")
            body = (f"NyayaMitra: Your corruption report status updated to {data.get('status', '')}."
                    + (f" Resolution: {resolution}" if resolution else ""))
        elif name == "case-update":
            body = (f"NyayaMitra: Case {data.get('caseNumber', '')} updated - {data.get('eventTitle', '')}. "
                    f"Date: {_date_text(data.get('eventDate'))}")
        elif name == "high-priority-report":
            body = f"NyayaMitra: HIGH priority report needs review - {data.get('title', '')}"
        else:
            body = "You have a new notification from NyayaMitra."
        return "", re.sub(r"\s+", " ", body).strip()
