from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from dailyping.db.models import Entry, SubscriptionState, User
from dailyping.models.notification_models import (
    EntrySnapshot,
    SubItemSnapshot,
    UserSnapshot,
)
from dailyping.utils.datetime_utils import parse_day


def to_user_snapshot(user: User) -> UserSnapshot:
    return UserSnapshot(
        id=user.id,
        email=user.email,
        username=user.username,
        timezone=user.timezone,
        trigger_time=user.trigger_time,
        tone=user.tone.value if user.tone else "gentle",
        push_subscription=user.push_subscription,
    )


def to_entry_snapshot(entry: Entry) -> EntrySnapshot:
    return EntrySnapshot(
        id=entry.id,
        day=parse_day(entry.day),
        content=entry.content,
        reminders=tuple(entry.reminders or ()),
        sub_items=tuple(
            SubItemSnapshot(
                position=item.position,
                text=item.text,
                reminders=tuple(item.reminders or ()),
            )
            for item in entry.sub_items
        ),
    )


class UserRepository:
    """Persistence reads and conditional writes used by the background passes."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def load_users_with_active_triggers(self) -> List[UserSnapshot]:
        result = self.db.execute(
            select(User)
            .where(User.notifications_enabled.is_(True))
            .order_by(User.created_at, User.id)
        )
        return [to_user_snapshot(user) for user in result.scalars().all()]

    def load_entry_for_day(self, user_id: str, day: date) -> Optional[EntrySnapshot]:
        result = self.db.execute(
            select(Entry)
            .options(selectinload(Entry.sub_items))
            .where(Entry.user_id == user_id, Entry.day == day.isoformat())
        )
        entry = result.scalar_one_or_none()
        return to_entry_snapshot(entry) if entry else None

    def load_subscription_references(self) -> List[Tuple[str, str, SubscriptionState]]:
        """``(user_id, external_subscription_id, subscription_state)`` for every billed user."""
        result = self.db.execute(
            select(User.id, User.external_subscription_id, User.subscription_state)
            .where(User.external_subscription_id.is_not(None))
            .where(User.external_subscription_id != "")
            .order_by(User.id)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    def compare_and_set_subscription(
        self,
        user_id: str,
        expected: SubscriptionState,
        new_state: SubscriptionState,
    ) -> bool:
        """Write ``new_state`` only if the row still holds ``expected``."""
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.subscription_state == expected)
            .values(subscription_state=new_state)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def clear_push_subscription(self, user_id: str, endpoint: str) -> bool:
        """Forget a push subscription the provider reported as gone.

        Only clears when the stored endpoint is still the one that failed, so a
        re-subscription made in the meantime is left alone.
        """
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.push_endpoint == endpoint)
            .values(push_endpoint=None, push_p256dh=None, push_auth=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1
