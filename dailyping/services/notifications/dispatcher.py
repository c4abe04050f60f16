import asyncio
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dailyping.config.settings import settings
from dailyping.db.models import DeliveryChannel, DeliveryOutcome, DeliveryStatus
from dailyping.models.notification_models import (
    ChannelResult,
    DispatchResult,
    NotificationIntent,
)
from dailyping.services.channels.base import EmailSender, PushSender
from dailyping.services.notifications.messages import push_payload
from dailyping.services.user_repository import UserRepository
from dailyping.utils.logging import get_logger


class DeliveryDispatcher:
    """
    Delivers a claimed notification: email first, then push as a best-effort
    extra.

    The claim is consumed before we get here, so nothing in this class retries.
    A failed email is recorded and the period is done; a failed push is
    recorded and has no effect on the email outcome. Every provider call is
    bounded by ``send_timeout`` and a timeout is recorded like any other failure.
    """

    def __init__(
        self,
        db_session: Session,
        email_sender: EmailSender,
        push_sender: Optional[PushSender] = None,
        send_timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ):
        self.db = db_session
        self.email_sender = email_sender
        self.push_sender = push_sender
        self.send_timeout = send_timeout or settings.CHANNEL_TIMEOUT_SECONDS
        self.users = UserRepository(db_session)
        self.logger = get_logger().bind(request_id=request_id) if request_id else get_logger()

    async def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        user = intent.user
        result = DispatchResult(
            claim_id=intent.claim_id,
            email_status=DeliveryStatus.FAILED.value,
            push_status=DeliveryStatus.SKIPPED.value,
        )

        email_result = await self._send_email(intent)
        self._record(intent, DeliveryChannel.EMAIL, email_result)

        if not email_result.success:
            result.errors.append(f"email: {email_result.error}")
            self.logger.warning(
                f"Email delivery failed for user {user.id} "
                f"({intent.trigger.period_key}): {email_result.error}"
            )
            return result

        result.email_status = DeliveryStatus.SENT.value

        subscription = user.push_subscription
        if subscription is None or self.push_sender is None:
            self._record(intent, DeliveryChannel.PUSH, None)
            return result

        push_result = await self._send_push(intent)
        self._record(intent, DeliveryChannel.PUSH, push_result)

        if push_result.success:
            result.push_status = DeliveryStatus.SENT.value
        else:
            result.push_status = DeliveryStatus.FAILED.value
            result.errors.append(f"push: {push_result.error}")
            self.logger.info(f"Push delivery failed for user {user.id}: {push_result.error}")
            if push_result.gone:
                self._forget_push_subscription(user.id, subscription.endpoint)

        return result

    def record_interrupted(self, intent: NotificationIntent, reason: str) -> DispatchResult:
        """
        Close out a dispatch that was cut off before it finished.

        Channels that already have an outcome keep it. A missing email outcome
        is recorded as failed; a missing push outcome after a sent email too.
        """
        recorded: Dict[DeliveryChannel, DeliveryStatus] = {
            channel: status
            for channel, status in self.db.execute(
                select(DeliveryOutcome.channel, DeliveryOutcome.status).where(
                    DeliveryOutcome.claim_id == intent.claim_id
                )
            ).all()
        }
        interrupted = ChannelResult(success=False, error=reason)
        result = DispatchResult(
            claim_id=intent.claim_id,
            email_status=DeliveryStatus.FAILED.value,
            push_status=DeliveryStatus.SKIPPED.value,
        )

        email_status = recorded.get(DeliveryChannel.EMAIL)
        if email_status is None:
            self._record(intent, DeliveryChannel.EMAIL, interrupted)
            result.errors.append(f"email: {reason}")
            return result

        result.email_status = email_status.value
        if email_status != DeliveryStatus.SENT:
            return result

        push_status = recorded.get(DeliveryChannel.PUSH)
        if push_status is None:
            self._record(intent, DeliveryChannel.PUSH, interrupted)
            result.push_status = DeliveryStatus.FAILED.value
            result.errors.append(f"push: {reason}")
        else:
            result.push_status = push_status.value
        return result

    async def _send_email(self, intent: NotificationIntent) -> ChannelResult:
        try:
            return await asyncio.wait_for(
                self.email_sender.send_email(intent.user.email, intent.message),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            return ChannelResult(
                success=False, error=f"Email send timed out after {self.send_timeout}s"
            )
        except Exception as e:
            self.logger.error(f"Email sender raised for user {intent.user.id}: {e}", exc_info=True)
            return ChannelResult(success=False, error=str(e))

    async def _send_push(self, intent: NotificationIntent) -> ChannelResult:
        try:
            return await asyncio.wait_for(
                self.push_sender.send_push(
                    intent.user.push_subscription, push_payload(intent.message)
                ),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            return ChannelResult(
                success=False, error=f"Push send timed out after {self.send_timeout}s"
            )
        except Exception as e:
            self.logger.error(f"Push sender raised for user {intent.user.id}: {e}", exc_info=True)
            return ChannelResult(success=False, error=str(e))

    def _record(
        self,
        intent: NotificationIntent,
        channel: DeliveryChannel,
        channel_result: Optional[ChannelResult],
    ) -> None:
        """Persist one outcome row. ``None`` means the channel was skipped."""
        if channel_result is None:
            status = DeliveryStatus.SKIPPED
        elif channel_result.success:
            status = DeliveryStatus.SENT
        else:
            status = DeliveryStatus.FAILED

        outcome = DeliveryOutcome(
            claim_id=intent.claim_id,
            user_id=intent.user.id,
            channel=channel,
            status=status,
            provider_message_id=channel_result.message_id if channel_result else None,
            error=channel_result.error if channel_result else None,
        )
        try:
            self.db.add(outcome)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(
                f"Failed to record {channel.value} outcome for claim {intent.claim_id}: {e}"
            )

    def _forget_push_subscription(self, user_id: str, endpoint: str) -> None:
        try:
            if self.users.clear_push_subscription(user_id, endpoint):
                self.logger.info(f"Cleared expired push subscription for user {user_id}")
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(f"Failed to clear push subscription for user {user_id}: {e}")
