import asyncio
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from dailyping.config.settings import settings
from dailyping.db.models import DeliveryStatus, TriggerKind
from dailyping.models.notification_models import (
    ClaimKey,
    DispatchResult,
    DueTrigger,
    EntrySnapshot,
    NotificationIntent,
    TickSummary,
    UserSnapshot,
)
from dailyping.services.notifications.dispatcher import DeliveryDispatcher
from dailyping.services.notifications.ledger import (
    DEFAULT_CHANNEL_GROUP,
    NotificationLedger,
    daily_ping_period_key,
    entry_reminder_period_key,
    sub_item_reminder_period_key,
)
from dailyping.services.notifications.messages import build_message
from dailyping.services.user_repository import UserRepository
from dailyping.utils.datetime_utils import (
    LocalClock,
    is_valid_hhmm,
    local_clock,
    normalize_trigger_time,
    utc_now,
)
from dailyping.utils.logging import get_logger


def _reminder_times(values: Iterable[str]) -> Tuple[str, ...]:
    """Valid ``HH:MM`` stamps from a stored reminder list, padded, invalid ones dropped."""
    times = []
    for value in values or ():
        if not isinstance(value, str):
            continue
        candidate = value.strip()
        if re.match(r"^\d:[0-5]\d$", candidate):
            candidate = f"0{candidate}"
        if is_valid_hhmm(candidate):
            times.append(candidate)
    return tuple(sorted(set(times)))


def find_due_triggers(
    user: UserSnapshot, entry: Optional[EntrySnapshot], clock: LocalClock
) -> List[DueTrigger]:
    """
    Every trigger of ``user`` that ``clock`` reaches: its local time is
    ``clock.hhmm`` or was skipped by a forward DST jump since the previous minute.

    Pure: no I/O, no ledger access. The caller claims each returned period key
    before delivering anything.
    """
    due: List[DueTrigger] = []
    day_key = clock.day_key

    if clock.reaches(normalize_trigger_time(user.trigger_time)):
        due.append(
            DueTrigger(
                kind=TriggerKind.DAILY_PING.value,
                period_key=daily_ping_period_key(day_key),
            )
        )

    # Reminders only belong to the entry of the user's current local day
    if entry is None or entry.day != clock.day:
        return due

    for hhmm in _reminder_times(entry.reminders):
        if clock.reaches(hhmm):
            due.append(
                DueTrigger(
                    kind=TriggerKind.ENTRY_REMINDER.value,
                    period_key=entry_reminder_period_key(day_key, hhmm, entry.id),
                    text=entry.content,
                )
            )

    for item in entry.sub_items:
        for hhmm in _reminder_times(item.reminders):
            if clock.reaches(hhmm):
                due.append(
                    DueTrigger(
                        kind=TriggerKind.SUB_ITEM_REMINDER.value,
                        period_key=sub_item_reminder_period_key(
                            day_key, hhmm, entry.id, item.position
                        ),
                        text=item.text,
                    )
                )

    return due


class TriggerEvaluator:
    """
    One evaluation pass per scheduler tick.

    Users are evaluated concurrently, at most ``max_concurrency`` at a time. Each
    claimed delivery is bounded by ``per_user_timeout`` seconds; one that runs
    over is closed out as failed and the user's remaining triggers still get
    their claim. A failure for one user is counted and logged and never reaches
    the other users.
    """

    def __init__(
        self,
        db_session: Session,
        dispatcher: DeliveryDispatcher,
        ledger: Optional[NotificationLedger] = None,
        repository: Optional[UserRepository] = None,
        channel_group: str = DEFAULT_CHANNEL_GROUP,
        max_concurrency: Optional[int] = None,
        per_user_timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher
        self.ledger = ledger or NotificationLedger(db_session)
        self.users = repository or UserRepository(db_session)
        self.channel_group = channel_group
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENT_USERS
        self.per_user_timeout = per_user_timeout or settings.PER_USER_TIMEOUT_SECONDS
        self.logger = get_logger().bind(request_id=request_id) if request_id else get_logger()

    async def on_tick(self, now: Optional[datetime] = None) -> TickSummary:
        now = now or utc_now()
        summary = TickSummary()

        users = self.users.load_users_with_active_triggers()
        summary.users_evaluated = len(users)
        if not users:
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(user: UserSnapshot) -> None:
            async with semaphore:
                try:
                    await self.evaluate_user(user, now, summary)
                except Exception as e:
                    summary.user_failures += 1
                    self.logger.error(
                        f"Trigger evaluation failed for user {user.id}: {e}", exc_info=True
                    )
                    self.db.rollback()

        await asyncio.gather(*(guarded(user) for user in users))

        self.logger.info(f"Trigger tick finished: {summary.to_dict()}")
        return summary

    async def evaluate_user(
        self, user: UserSnapshot, now: datetime, summary: TickSummary
    ) -> None:
        clock = local_clock(now, user.timezone)
        entry = self.users.load_entry_for_day(user.id, clock.day)

        triggers = find_due_triggers(user, entry, clock)
        summary.triggers_due += len(triggers)

        for trigger in triggers:
            claim = self.ledger.try_claim(
                ClaimKey(
                    user_id=user.id,
                    channel=self.channel_group,
                    period_key=trigger.period_key,
                ),
                TriggerKind(trigger.kind),
            )
            if claim is None:
                summary.claims_rejected += 1
                continue
            summary.claims_won += 1

            intent = NotificationIntent(
                claim_id=claim.id,
                user=user,
                trigger=trigger,
                message=build_message(trigger, user.tone, user.username),
            )
            result = await self._dispatch_within_bound(intent, summary)

            if result.delivered:
                summary.emails_sent += 1
            else:
                summary.emails_failed += 1

            if result.push_status == DeliveryStatus.SENT.value:
                summary.pushes_sent += 1
            elif result.push_status == DeliveryStatus.FAILED.value:
                summary.pushes_failed += 1

    async def _dispatch_within_bound(
        self, intent: NotificationIntent, summary: TickSummary
    ) -> DispatchResult:
        try:
            return await asyncio.wait_for(
                self.dispatcher.dispatch(intent), timeout=self.per_user_timeout
            )
        except asyncio.TimeoutError:
            summary.delivery_timeouts += 1
            self.logger.warning(
                f"Delivery for user {intent.user.id} ({intent.trigger.period_key}) "
                f"timed out after {self.per_user_timeout}s"
            )
            return self.dispatcher.record_interrupted(
                intent, f"Delivery timed out after {self.per_user_timeout}s"
            )
