"""
Channel Adapters — Base infrastructure for outbound notification channels.

Provides:
- ChannelError: structured error hierarchy
- CircuitBreaker: failure-counting breaker with half-open probe
- ChannelMetrics: per-channel send/fail/latency tracking
- ChannelAdapter: abstract base wrapping every send with breaker and metrics
- ChannelRegistry: adapter lookup, health checks

A send is attempted exactly once. Retries belong to the job queue, which
re-runs the whole notification job with backoff.
"""
from __future__ import annotations

import abc
import time
import uuid
import structlog
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from models.schemas import NotificationChannel, User

logger = structlog.get_logger()

# Result statuses that count as a successful hand-off to the provider
SUCCESS_STATUSES = ("sent", "simulated")


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class CircuitOpenError(ChannelError):
    def __init__(self, channel: str = ""):
        super().__init__(f"Circuit breaker open for {channel}", channel, retryable=True)


# ══════════════════════════════════════════════════════════════
#  CIRCUIT BREAKER
# ══════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Consecutive-failure breaker for one provider.

    After ``failure_threshold`` failures in a row the breaker opens and
    sends are refused. Once ``recovery_timeout`` seconds pass, one probe
    is let through (half_open): success closes the breaker, failure
    opens it for another full timeout.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._consecutive = 0
        self._opened_at: Optional[float] = None
        self._failures = 0
        self._successes = 0

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return self.CLOSED
        if self._clock() - self._opened_at >= self.recovery_timeout:
            return self.HALF_OPEN
        return self.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == self.OPEN

    def record_failure(self):
        self._failures += 1
        self._consecutive += 1
        if self.state == self.HALF_OPEN or self._consecutive >= self.failure_threshold:
            self._opened_at = self._clock()
            logger.warning("circuit_opened", consecutive_failures=self._consecutive)

    def record_success(self):
        self._successes += 1
        if self._opened_at is not None and self.state == self.HALF_OPEN:
            logger.info("circuit_closed")
        self.reset()

    def reset(self):
        self._consecutive = 0
        self._opened_at = None

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "consecutive_failures": self._consecutive,
            "total_failures": self._failures,
            "total_successes": self._successes,
        }


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

@dataclass
class ChannelMetrics:
    """Send counters for one channel. Latency and error history are bounded."""
    channel: NotificationChannel
    sent: int = 0
    failed: int = 0
    latencies_ms: deque = field(default_factory=lambda: deque(maxlen=500))
    recent_errors: deque = field(default_factory=lambda: deque(maxlen=10))

    def record_send(self, latency_ms: float = 0.0):
        self.sent += 1
        if latency_ms > 0:
            self.latencies_ms.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.failed += 1
        if error:
            self.recent_errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return sum(self.latencies_ms) / len(self.latencies_ms)

    @property
    def failure_rate(self) -> float:
        attempts = self.sent + self.failed
        return self.failed / attempts if attempts else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "sent": self.sent,
            "failed": self.failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": list(self.recent_errors),
        }


# ══════════════════════════════════════════════════════════════
#  CHANNEL ADAPTER — Abstract Base
# ══════════════════════════════════════════════════════════════

class ChannelAdapter(abc.ABC):
    """
    Base class for all channel adapters.

    Subclasses implement _do_send and _render_template. The base class
    wraps every send with the circuit breaker and metrics, and turns
    transport exceptions into a ``{"status": "failed"}`` result.
    """

    channel_type: NotificationChannel

    def __init__(self):
        self._initialized = False
        self._config: dict[str, Any] = {}
        self._breaker = CircuitBreaker()
        self._metrics = ChannelMetrics(self.channel_type)

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def _do_send(self, address: str, content: str, metadata: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    def _render_template(self, name: str, data: dict[str, Any]) -> tuple[str, str]:
        """Returns (subject, body). Channels without subjects return an empty subject."""
        ...

    @abc.abstractmethod
    async def initialize(self, config: dict[str, Any]) -> None:
        ...

    # ── Public send ───────────────────────────────────────────

    async def send_message(self, user: User, content: str, metadata: dict[str, Any] = None) -> dict[str, Any]:
        metadata = metadata or {}
        message_id = metadata.get("message_id", str(uuid.uuid4()))

        address = self.get_address(user)
        if not address:
            self._metrics.record_failure("no_address")
            return {"status": "failed", "message_id": message_id,
                    "error": f"User {user.id} has no {self.channel_type.value} address"}

        if self._breaker.is_open:
            self._metrics.record_failure("circuit_open")
            return {"status": "circuit_open", "message_id": message_id,
                    "error": str(CircuitOpenError(self.channel_type.value))}

        start = time.monotonic()
        try:
            result = await self._do_send(address, content, metadata)
        except Exception as e:
            self._breaker.record_failure()
            self._metrics.record_failure(str(e))
            logger.warning("channel_send_error",
                           channel=self.channel_type.value,
                           user_id=user.id,
                           error=str(e))
            return {"status": "failed", "message_id": message_id, "error": str(e)}

        latency = (time.monotonic() - start) * 1000
        result.setdefault("message_id", message_id)
        result["latency_ms"] = round(latency, 1)
        if result.get("status") in SUCCESS_STATUSES:
            self._breaker.record_success()
            self._metrics.record_send(latency)
        else:
            self._breaker.record_failure()
            self._metrics.record_failure(result.get("error", ""))
        return result

    async def send_template(self, user: User, template_name: str, template_data: dict[str, Any],
                            metadata: dict[str, Any] = None) -> dict[str, Any]:
        subject, body = self._render_template(template_name, template_data)
        return await self.send_message(
            user, body, {**(metadata or {}), "subject": subject, "template": template_name},
        )

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel_type.value,
            "initialized": self._initialized,
            "circuit_breaker": self._breaker.stats,
            "metrics": self._metrics.to_dict(),
        }

    @abc.abstractmethod
    def get_address(self, user: User) -> Optional[str]:
        ...

    async def shutdown(self) -> None:
        pass


# ══════════════════════════════════════════════════════════════
#  CHANNEL REGISTRY
# ══════════════════════════════════════════════════════════════

class ChannelRegistry:
    def __init__(self):
        self._adapters: dict[NotificationChannel, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter):
        self._adapters[adapter.channel_type] = adapter

    def get(self, channel_type: NotificationChannel) -> Optional[ChannelAdapter]:
        return self._adapters.get(channel_type)

    def get_available(self) -> list[NotificationChannel]:
        return list(self._adapters.keys())

    async def health_check_all(self) -> dict[str, Any]:
        return {ch.value: await a.health_check() for ch, a in self._adapters.items()}

    async def initialize_all(self, configs: dict[str, Any]):
        for ch, adapter in self._adapters.items():
            try:
                ch_cfg = configs.get(ch.value, {})
                # ChannelConfig dataclass → dict so adapters can call .get()
                if hasattr(ch_cfg, "credentials"):
                    ch_cfg = ch_cfg.credentials
                await adapter.initialize(ch_cfg)
            except Exception as e:
                logger.error("channel_init_failed", channel=ch.value, error=str(e))

    async def shutdown_all(self):
        for ch, a in self._adapters.items():
            try:
                await a.shutdown()
            except Exception as e:
                logger.warning("channel_shutdown_failed", channel=ch.value, error=str(e))
