import asyncio
import json
from typing import Optional

from pywebpush import webpush, WebPushException

from dailyping.config.settings import settings
from dailyping.models.notification_models import ChannelResult, PushSubscription
from dailyping.utils.logging import get_logger

logger = get_logger()

# Push services answer 404/410 for subscriptions that were revoked or expired
GONE_STATUS_CODES = (404, 410)


class WebPushSender:
    """Sends VAPID-signed web push messages with pywebpush."""

    def __init__(
        self,
        vapid_private_key: Optional[str] = None,
        vapid_subject: Optional[str] = None,
        ttl: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.vapid_private_key = vapid_private_key or settings.VAPID_PRIVATE_KEY
        self.vapid_claims = {"sub": vapid_subject or settings.VAPID_SUBJECT}
        self.ttl = ttl or settings.PUSH_TTL_SECONDS
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS

    def _send(self, subscription: PushSubscription, payload: dict):
        return webpush(
            subscription_info=subscription.to_subscription_info(),
            data=json.dumps(payload),
            vapid_private_key=self.vapid_private_key,
            vapid_claims=dict(self.vapid_claims),
            ttl=self.ttl,
            timeout=self.timeout,
        )

    async def send_push(self, subscription: PushSubscription, payload: dict) -> ChannelResult:
        if not self.vapid_private_key:
            return ChannelResult(success=False, error="VAPID_PRIVATE_KEY not configured")

        try:
            # pywebpush is blocking
            await asyncio.to_thread(self._send, subscription, payload)
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                return ChannelResult(
                    success=False, error=f"Subscription gone ({status_code})", gone=True
                )
            return ChannelResult(success=False, error=str(e))
        except Exception as e:
            logger.warning(f"Push delivery raised: {e}")
            return ChannelResult(success=False, error=str(e))

        return ChannelResult(success=True)
