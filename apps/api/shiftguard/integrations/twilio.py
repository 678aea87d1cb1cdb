"""Twilio REST integration for the SMS and voice channels."""

import abc
import html

from shiftguard.config import settings
from shiftguard.logging_config import get_logger
from shiftguard.models.notification_log import ChannelType
from shiftguard.services.channels import ChannelAdapter, DispatchResult, is_permanent_status

logger = get_logger(__name__)


class _TwilioAdapter(ChannelAdapter):
    """Shared plumbing for Twilio resources posted under an account."""

    resource: str

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._api_base = (api_base or settings.twilio_api_base).rstrip("/")

    @abc.abstractmethod
    def _form(self, recipient: str, message: str) -> dict[str, str]:
        """Form body for the Twilio resource."""

    async def _send(self, recipient: str, message: str) -> DispatchResult:
        url = f"{self._api_base}/Accounts/{self._account_sid}/{self.resource}"
        async with self._client(auth=(self._account_sid, self._auth_token)) as client:
            response = await client.post(url, data=self._form(recipient, message))

        if response.status_code >= 400:
            logger.warning(
                "Twilio request rejected",
                channel=self.channel.value,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return DispatchResult.failure(
                f"Twilio API error {response.status_code}: {response.text[:200]}",
                permanent=is_permanent_status(response.status_code),
            )

        sid = response.json().get("sid")
        logger.info("Twilio request accepted", channel=self.channel.value, sid=sid)
        return DispatchResult.ok(sid)


class TwilioSmsAdapter(_TwilioAdapter):
    channel = ChannelType.SMS
    resource = "Messages.json"

    def _form(self, recipient: str, message: str) -> dict[str, str]:
        return {"To": recipient, "From": self._from_number, "Body": message}


class TwilioVoiceAdapter(_TwilioAdapter):
    """Places a call that reads the message aloud."""

    channel = ChannelType.VOICE
    resource = "Calls.json"

    def __init__(self, *args, language: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._language = language or settings.twilio_voice_language

    def _form(self, recipient: str, message: str) -> dict[str, str]:
        twiml = (
            f'<Response><Say language="{self._language}">'
            f"{html.escape(message)}</Say></Response>"
        )
        return {"To": recipient, "From": self._from_number, "Twiml": twiml}
