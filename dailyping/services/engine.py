from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from dailyping.models.billing_models import ReconciliationSummary
from dailyping.models.notification_models import TickSummary
from dailyping.models.streak_models import StreakState
from dailyping.schemas.entry_schemas import CreateEntryRequest
from dailyping.services.billing.reconciliation_service import SubscriptionReconciler
from dailyping.services.billing.stripe_client import BillingClient, StripeBillingClient
from dailyping.services.channels.base import EmailSender, PushSender
from dailyping.services.channels.email_service import ResendEmailSender
from dailyping.services.channels.push_service import WebPushSender
from dailyping.services.entry_service import SubmissionService
from dailyping.services.notifications.dispatcher import DeliveryDispatcher
from dailyping.services.notifications.trigger_evaluator import TriggerEvaluator
from dailyping.services.streak_service import StreakService
from dailyping.utils.errors import DuplicateEntryError
from dailyping.utils.logging import get_logger


class DailyPingEngine:
    """
    The three entry points the surrounding service calls.

    ``on_tick`` and ``on_reconciliation_tick`` are driven by Celery beat,
    ``on_submission`` by the entries API.
    """

    def __init__(
        self,
        db_session: Session,
        email_sender: EmailSender,
        push_sender: Optional[PushSender],
        billing_client: BillingClient,
        request_id: Optional[str] = None,
    ):
        self.db = db_session
        self.logger = get_logger().bind(request_id=request_id) if request_id else get_logger()
        self.streaks = StreakService(db_session)
        self.submissions = SubmissionService(db_session, self.streaks)
        self.evaluator = TriggerEvaluator(
            db_session,
            DeliveryDispatcher(db_session, email_sender, push_sender, request_id=request_id),
            request_id=request_id,
        )
        self.reconciler = SubscriptionReconciler(
            db_session, billing_client, request_id=request_id
        )

    async def on_tick(self, now: Optional[datetime] = None) -> TickSummary:
        return await self.evaluator.on_tick(now)

    async def on_submission(self, user_id: str, day: date, content: str) -> StreakState:
        """
        Record a submission for ``day``.

        Creates the entry when it does not exist yet. Calling it again for the
        same day leaves both the entry and the streak untouched.
        """
        try:
            response = await self.submissions.submit(
                user_id, CreateEntryRequest(content=content, day=day)
            )
            streak = response.streak
            return StreakState(
                current=streak.current,
                max=streak.max,
                last_entry_date=streak.last_entry_date,
            )
        except DuplicateEntryError:
            self.logger.debug(f"Entry for user {user_id} on {day.isoformat()} already exists")
            return self.streaks.record_submission(user_id, day)

    async def on_reconciliation_tick(
        self, now: Optional[datetime] = None
    ) -> ReconciliationSummary:
        return await self.reconciler.on_reconciliation_tick(now)


def build_engine(db_session: Session, request_id: Optional[str] = None) -> DailyPingEngine:
    """Engine wired to the production collaborators (Resend, web push, Stripe)."""
    return DailyPingEngine(
        db_session,
        email_sender=ResendEmailSender(),
        push_sender=WebPushSender(),
        billing_client=StripeBillingClient(),
        request_id=request_id,
    )
