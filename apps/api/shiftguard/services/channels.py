"""Notification channel adapters: contract, credentials and registry.

Every transport (push, SMS, voice) implements ChannelAdapter. Adapters
never raise past ``send``; transport faults come back as a failed
DispatchResult so the stage executor's retry logic stays channel-agnostic.
"""

import abc
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from shiftguard.config import settings
from shiftguard.logging_config import get_logger
from shiftguard.models.notification_log import ChannelType
from shiftguard.models.organization import Organization

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a single send through a channel adapter.

    ``permanent`` marks failures that will not succeed on retry (bad
    recipient, revoked credentials). It is recorded for operators; the
    executor retries uniformly regardless.
    """

    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    permanent: bool = False

    @classmethod
    def ok(cls, provider_message_id: str | None = None) -> "DispatchResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failure(cls, error: str, permanent: bool = False) -> "DispatchResult":
        return cls(success=False, error=error, permanent=permanent)

    @classmethod
    def unsupported(cls, channel: ChannelType) -> "DispatchResult":
        return cls(
            success=False,
            error=f"Unsupported channel: no adapter registered for {channel.value}",
            permanent=True,
        )

    def describe_error(self) -> str | None:
        """Error text prefixed with its classification, for the log."""
        if self.success or self.error is None:
            return None
        kind = "permanent" if self.permanent else "transient"
        return f"[{kind}] {self.error}"


def is_permanent_status(status_code: int) -> bool:
    """Classify an HTTP status from a provider.

    4xx means the request itself is wrong and will keep failing, except
    408 and 429 which are worth retrying. Everything else is transient.
    """
    return 400 <= status_code < 500 and status_code not in (408, 429)


@dataclass(frozen=True)
class ChannelCredentials:
    """Provider credentials for one organization.

    Resolved explicitly per dispatch instead of read from module globals.
    """

    line_channel_access_token: str = ""
    line_channel_secret: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    @property
    def line_configured(self) -> bool:
        return bool(self.line_channel_access_token)

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_from_number
        )


def credentials_for_organization(
    organization: Organization | None,
) -> ChannelCredentials:
    """Build channel credentials for an organization.

    Each provider block falls back to the engine-wide defaults from
    settings when the organization has not configured its own.

    Args:
        organization: The organization, or None if it could not be loaded.

    Returns:
        ChannelCredentials for dispatching on the organization's behalf.
    """
    line_config = (organization.line_config if organization else None) or {}
    twilio_config = (organization.twilio_config if organization else None) or {}

    if line_config.get("is_configured"):
        line_token = line_config.get("channel_access_token", "")
        line_secret = line_config.get("channel_secret", "")
    else:
        if organization is not None:
            logger.debug(
                "LINE config not set for organization, using defaults",
                organization_id=str(organization.id),
            )
        line_token = settings.line_channel_access_token
        line_secret = settings.line_channel_secret

    if twilio_config.get("is_configured"):
        twilio_sid = twilio_config.get("account_sid", "")
        twilio_token = twilio_config.get("auth_token", "")
        twilio_from = twilio_config.get("from_number", "")
    else:
        twilio_sid = settings.twilio_account_sid
        twilio_token = settings.twilio_auth_token
        twilio_from = settings.twilio_from_number

    return ChannelCredentials(
        line_channel_access_token=line_token,
        line_channel_secret=line_secret,
        twilio_account_sid=twilio_sid,
        twilio_auth_token=twilio_token,
        twilio_from_number=twilio_from,
    )


class ChannelAdapter(abc.ABC):
    """Uniform interface over one notification transport.

    Subclasses implement ``_send``; ``send`` converts anything it raises
    into a failed DispatchResult.
    """

    channel: ChannelType

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.notification_timeout_seconds
        self._transport = transport

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            **kwargs,
        )

    async def send(self, recipient: str, message: str) -> DispatchResult:
        """Send a rendered message to a recipient address.

        Args:
            recipient: Channel-specific address (push user id, phone number).
            message: Rendered message text.

        Returns:
            DispatchResult; never raises.
        """
        try:
            return await self._send(recipient, message)
        except httpx.TimeoutException as e:
            logger.warning(
                "Channel dispatch timed out",
                channel=self.channel.value,
                error=str(e),
            )
            return DispatchResult.failure(f"Timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning(
                "Channel transport error",
                channel=self.channel.value,
                error=str(e),
            )
            return DispatchResult.failure(f"Transport error: {e}")
        except Exception as e:
            logger.exception(
                "Unexpected channel adapter error",
                channel=self.channel.value,
            )
            return DispatchResult.failure(f"Unexpected error: {e}")

    @abc.abstractmethod
    async def _send(self, recipient: str, message: str) -> DispatchResult:
        """Provider-specific send."""


class ChannelRegistry:
    """Typed lookup from the closed channel set to adapters."""

    def __init__(self, adapters: Mapping[ChannelType, ChannelAdapter] | None = None):
        self._adapters: dict[ChannelType, ChannelAdapter] = dict(adapters or {})

    def register(self, adapter: ChannelAdapter) -> None:
        self._adapters[adapter.channel] = adapter

    def get(self, channel: ChannelType) -> ChannelAdapter | None:
        return self._adapters.get(channel)

    def __contains__(self, channel: ChannelType) -> bool:
        return channel in self._adapters

    async def send(
        self,
        channel: ChannelType,
        recipient: str,
        message: str,
    ) -> DispatchResult:
        """Dispatch through the adapter for ``channel``.

        A channel without an adapter yields an explicit unsupported result.
        """
        adapter = self.get(channel)
        if adapter is None:
            logger.warning("No adapter registered for channel", channel=channel.value)
            return DispatchResult.unsupported(channel)
        return await adapter.send(recipient, message)


def build_channel_registry(
    credentials: ChannelCredentials,
    provider: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChannelRegistry:
    """Build the adapter registry for one organization's credentials.

    In ``stub`` mode every channel logs instead of sending. In ``live``
    mode a provider is registered only when its credentials are present,
    so an unconfigured channel surfaces as an unsupported dispatch.

    Args:
        credentials: Organization channel credentials.
        provider: 'stub' or 'live'; defaults to settings.notification_provider.
        transport: Optional httpx transport (tests).

    Returns:
        A populated ChannelRegistry.
    """
    from shiftguard.integrations.line import LinePushAdapter
    from shiftguard.integrations.stub import StubChannelAdapter
    from shiftguard.integrations.twilio import TwilioSmsAdapter, TwilioVoiceAdapter

    mode = provider or settings.notification_provider
    registry = ChannelRegistry()

    if mode == "stub":
        for channel in ChannelType:
            registry.register(StubChannelAdapter(channel))
        return registry

    if credentials.line_configured:
        registry.register(
            LinePushAdapter(
                credentials.line_channel_access_token,
                transport=transport,
            )
        )

    if credentials.twilio_configured:
        registry.register(
            TwilioSmsAdapter(
                credentials.twilio_account_sid,
                credentials.twilio_auth_token,
                credentials.twilio_from_number,
                transport=transport,
            )
        )
        registry.register(
            TwilioVoiceAdapter(
                credentials.twilio_account_sid,
                credentials.twilio_auth_token,
                credentials.twilio_from_number,
                transport=transport,
            )
        )

    return registry
