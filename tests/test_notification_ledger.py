from sqlalchemy import func, select

from dailyping.db.models import NotificationClaim, TriggerKind
from dailyping.models.notification_models import ClaimKey
from dailyping.services.notifications.ledger import (
    DEFAULT_CHANNEL_GROUP,
    NotificationLedger,
    daily_ping_period_key,
    entry_reminder_period_key,
    sub_item_reminder_period_key,
)


class TestPeriodKeys:
    def test_daily_ping_key_is_the_day(self):
        assert daily_ping_period_key("2024-01-15") == "2024-01-15"

    def test_reminder_keys_include_time_and_item(self):
        assert entry_reminder_period_key("2024-01-15", "09:30", "e1") == "2024-01-15T09:30#entry:e1"
        assert (
            sub_item_reminder_period_key("2024-01-15", "09:30", "e1", 2)
            == "2024-01-15T09:30#entry:e1#sub:2"
        )

    def test_reminder_keys_never_collide_with_daily_key(self):
        keys = {
            daily_ping_period_key("2024-01-15"),
            entry_reminder_period_key("2024-01-15", "08:00", "e1"),
            sub_item_reminder_period_key("2024-01-15", "08:00", "e1", 0),
            sub_item_reminder_period_key("2024-01-15", "08:00", "e1", 1),
        }
        assert len(keys) == 4


class TestClaim:
    def test_claim_twice_returns_true_then_false(self, db_session, make_user):
        user = make_user()
        ledger = NotificationLedger(db_session)
        key = ClaimKey(user_id=user.id, channel=DEFAULT_CHANNEL_GROUP, period_key="2024-01-15")

        assert ledger.claim(key, TriggerKind.DAILY_PING) is True
        assert ledger.claim(key, TriggerKind.DAILY_PING) is False

        count = db_session.execute(select(func.count()).select_from(NotificationClaim)).scalar_one()
        assert count == 1

    def test_rejected_claim_leaves_session_usable(self, db_session, make_user):
        user = make_user()
        ledger = NotificationLedger(db_session)
        key = ClaimKey(user_id=user.id, channel=DEFAULT_CHANNEL_GROUP, period_key="2024-01-15")

        ledger.claim(key)
        ledger.claim(key)

        other = ClaimKey(user_id=user.id, channel=DEFAULT_CHANNEL_GROUP, period_key="2024-01-16")
        assert ledger.claim(other) is True
        assert user.email == "user1@example.com"

    def test_keys_differ_by_user_and_channel(self, db_session, make_user):
        alice, bob = make_user(), make_user()
        ledger = NotificationLedger(db_session)

        assert ledger.claim(ClaimKey(alice.id, DEFAULT_CHANNEL_GROUP, "2024-01-15")) is True
        assert ledger.claim(ClaimKey(bob.id, DEFAULT_CHANNEL_GROUP, "2024-01-15")) is True
        assert ledger.claim(ClaimKey(alice.id, "email", "2024-01-15")) is True

    def test_try_claim_returns_row(self, db_session, make_user):
        user = make_user()
        ledger = NotificationLedger(db_session)
        key = ClaimKey(user.id, DEFAULT_CHANNEL_GROUP, "2024-01-15T09:30#entry:e1")

        claim = ledger.try_claim(key, TriggerKind.ENTRY_REMINDER)

        assert claim is not None
        assert claim.id
        assert claim.trigger_kind == TriggerKind.ENTRY_REMINDER
        assert ledger.try_claim(key) is None

    def test_is_claimed(self, db_session, make_user):
        user = make_user()
        ledger = NotificationLedger(db_session)
        key = ClaimKey(user.id, DEFAULT_CHANNEL_GROUP, "2024-01-15")

        assert ledger.is_claimed(key) is False
        ledger.claim(key)
        assert ledger.is_claimed(key) is True
