"""
Email delivery via Resend.
https://resend.com/docs/api-reference/emails/send-email
"""

from typing import Optional

import httpx

from dailyping.config.settings import settings
from dailyping.models.notification_models import ChannelResult, NotificationMessage
from dailyping.utils.logging import get_logger

logger = get_logger()


class ResendEmailSender:
    """Sends transactional email through the Resend HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.FROM_EMAIL
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS
        self._transport = transport

    async def send_email(self, address: str, message: NotificationMessage) -> ChannelResult:
        if not self.api_key:
            return ChannelResult(success=False, error="RESEND_API_KEY not configured")

        payload = {
            "from": self.from_email,
            "to": [address],
            "subject": message.subject,
            "html": message.html,
            "text": message.body,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException:
            return ChannelResult(success=False, error="Request timed out")
        except httpx.RequestError as e:
            return ChannelResult(success=False, error=f"Request failed: {str(e)}")

        if response.status_code in (200, 201):
            return ChannelResult(success=True, message_id=response.json().get("id"))

        logger.warning(f"Resend rejected email to {address}: {response.status_code}")
        return ChannelResult(
            success=False,
            error=f"Resend API error: {response.status_code} - {response.text}",
        )
