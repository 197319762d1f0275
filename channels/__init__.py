"""Channel adapters for outbound notifications."""
from channels.base import (
    ChannelAdapter,
    ChannelRegistry,
    ChannelError,
    CircuitBreaker,
    CircuitOpenError,
    ChannelMetrics,
    SUCCESS_STATUSES,
)
from channels.email_adapter import EmailAdapter
from channels.sms_adapter import SMSAdapter


async def create_channel_registry(configs: dict = None) -> ChannelRegistry:
    """Register and initialise the email and SMS adapters."""
    registry = ChannelRegistry()
    registry.register(EmailAdapter())
    registry.register(SMSAdapter())
    await registry.initialize_all(configs or {})
    return registry


__all__ = [
    "ChannelAdapter", "ChannelRegistry", "ChannelError", "CircuitOpenError",
    "CircuitBreaker", "ChannelMetrics", "SUCCESS_STATUSES",
    "EmailAdapter", "SMSAdapter", "create_channel_registry",
]
