"""LINE Messaging API integration.

Implements the push channel adapter and webhook signature verification.
"""

import base64
import hashlib
import hmac

from shiftguard.config import settings
from shiftguard.logging_config import get_logger
from shiftguard.models.notification_log import ChannelType
from shiftguard.services.channels import ChannelAdapter, DispatchResult, is_permanent_status

logger = get_logger(__name__)


def verify_line_signature(body: bytes, signature: str | None, channel_secret: str) -> bool:
    """Check the X-Line-Signature header of a webhook request.

    The signature is base64(HMAC-SHA256(channel_secret, raw body)).

    Args:
        body: Raw request body.
        signature: Value of the X-Line-Signature header.
        channel_secret: Organization's LINE channel secret.

    Returns:
        True if the signature matches.
    """
    if not signature or not channel_secret:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


class LinePushAdapter(ChannelAdapter):
    """Push channel backed by the LINE push message endpoint."""

    channel = ChannelType.PUSH

    def __init__(self, channel_access_token: str, api_base: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self._token = channel_access_token
        self._api_base = (api_base or settings.line_api_base).rstrip("/")

    async def _send(self, recipient: str, message: str) -> DispatchResult:
        payload = {
            "to": recipient,
            "messages": [{"type": "text", "text": message}],
        }
        async with self._client() as client:
            response = await client.post(
                f"{self._api_base}/message/push",
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )

        if response.status_code >= 400:
            logger.warning(
                "LINE push rejected",
                status_code=response.status_code,
                body=response.text[:200],
            )
            return DispatchResult.failure(
                f"LINE API error {response.status_code}: {response.text[:200]}",
                permanent=is_permanent_status(response.status_code),
            )

        request_id = response.headers.get("x-line-request-id")
        logger.info("LINE push sent", request_id=request_id)
        return DispatchResult.ok(request_id)
