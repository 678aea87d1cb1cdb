"""Logging-only channel adapter for development and local runs."""

import uuid

from shiftguard.logging_config import get_logger
from shiftguard.models.notification_log import ChannelType
from shiftguard.services.channels import ChannelAdapter, DispatchResult

logger = get_logger(__name__)


class StubChannelAdapter(ChannelAdapter):
    """Pretends every send succeeds and logs what would have gone out."""

    def __init__(self, channel: ChannelType, **kwargs):
        super().__init__(**kwargs)
        self.channel = channel

    async def _send(self, recipient: str, message: str) -> DispatchResult:
        message_id = f"stub-{uuid.uuid4().hex[:12]}"
        logger.info(
            "Stub notification",
            channel=self.channel.value,
            recipient=recipient,
            message_length=len(message),
            provider_message_id=message_id,
        )
        return DispatchResult.ok(message_id)
