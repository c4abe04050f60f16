from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dailyping.db.models import NotificationClaim, TriggerKind
from dailyping.models.notification_models import ClaimKey
from dailyping.utils.logging import get_logger

logger = get_logger()

# Email is primary and push rides along on the same claim
DEFAULT_CHANNEL_GROUP = "email_push"


def daily_ping_period_key(day_key: str) -> str:
    return day_key


def entry_reminder_period_key(day_key: str, hhmm: str, entry_id: str) -> str:
    return f"{day_key}T{hhmm}#entry:{entry_id}"


def sub_item_reminder_period_key(
    day_key: str, hhmm: str, entry_id: str, position: int
) -> str:
    return f"{entry_reminder_period_key(day_key, hhmm, entry_id)}#sub:{position}"


class NotificationLedger:
    """
    Append-only set of fulfilled ``(user, channel, period)`` tuples.

    ``claim`` is an insert guarded by the unique constraint on
    ``notification_claims``, so two evaluators racing on the same key cannot
    both win, whether they share a process or not.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def try_claim(
        self, key: ClaimKey, trigger_kind: Optional[TriggerKind] = None
    ) -> Optional[NotificationClaim]:
        """Reserve ``key``. Returns the new claim row, or None if it already existed."""
        claim = NotificationClaim(
            user_id=key.user_id,
            channel=key.channel,
            period_key=key.period_key,
            trigger_kind=trigger_kind,
        )
        self.db.add(claim)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug(
                f"Claim already exists for {key.user_id}/{key.channel}/{key.period_key}"
            )
            return None
        return claim

    def claim(self, key: ClaimKey, trigger_kind: Optional[TriggerKind] = None) -> bool:
        """True if ``key`` was newly claimed, False if it was already fulfilled."""
        return self.try_claim(key, trigger_kind) is not None

    def is_claimed(self, key: ClaimKey) -> bool:
        result = self.db.execute(
            select(NotificationClaim.id).where(
                NotificationClaim.user_id == key.user_id,
                NotificationClaim.channel == key.channel,
                NotificationClaim.period_key == key.period_key,
            )
        )
        return result.first() is not None
