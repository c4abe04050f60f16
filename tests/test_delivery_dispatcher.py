import pytest
from sqlalchemy import select

from dailyping.db.models import (
    DeliveryChannel,
    DeliveryOutcome,
    DeliveryStatus,
    TriggerKind,
    User,
)
from dailyping.models.notification_models import (
    ChannelResult,
    ClaimKey,
    DueTrigger,
    NotificationIntent,
)
from dailyping.services.notifications.dispatcher import DeliveryDispatcher
from dailyping.services.notifications.ledger import DEFAULT_CHANNEL_GROUP, NotificationLedger
from dailyping.services.notifications.messages import build_message
from dailyping.services.user_repository import to_user_snapshot


def _claimed_intent(db_session, user, period_key="2024-01-15") -> NotificationIntent:
    trigger = DueTrigger(kind=TriggerKind.DAILY_PING.value, period_key=period_key)
    claim = NotificationLedger(db_session).try_claim(
        ClaimKey(user.id, DEFAULT_CHANNEL_GROUP, period_key), TriggerKind.DAILY_PING
    )
    snapshot = to_user_snapshot(user)
    return NotificationIntent(
        claim_id=claim.id,
        user=snapshot,
        trigger=trigger,
        message=build_message(trigger, snapshot.tone, snapshot.username),
    )


def _outcomes(db_session, claim_id):
    rows = db_session.execute(
        select(DeliveryOutcome).where(DeliveryOutcome.claim_id == claim_id)
    ).scalars()
    return {row.channel: row for row in rows}


class TestDispatch:
    """Email first, push best effort."""

    @pytest.mark.asyncio
    async def test_email_and_push_sent(
        self, db_session, make_user, push_user_fields, email_sender, push_sender
    ):
        user = make_user(**push_user_fields)
        intent = _claimed_intent(db_session, user)

        result = await DeliveryDispatcher(db_session, email_sender, push_sender).dispatch(intent)

        assert result.delivered
        assert result.email_status == "sent"
        assert result.push_status == "sent"
        assert email_sender.addresses() == [user.email]
        assert len(push_sender.sent) == 1
        assert push_sender.sent[0][1]["title"] == "DailyPing Reminder"

        outcomes = _outcomes(db_session, intent.claim_id)
        assert outcomes[DeliveryChannel.EMAIL].status == DeliveryStatus.SENT
        assert outcomes[DeliveryChannel.EMAIL].provider_message_id == "msg-1"
        assert outcomes[DeliveryChannel.PUSH].status == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_push_failure_does_not_affect_email(
        self, db_session, make_user, push_user_fields, email_sender, make_push_sender
    ):
        user = make_user(**push_user_fields)
        intent = _claimed_intent(db_session, user)
        failing_push = make_push_sender(ChannelResult(success=False, error="push service 500"))

        result = await DeliveryDispatcher(db_session, email_sender, failing_push).dispatch(intent)

        assert result.delivered
        assert result.email_status == "sent"
        assert result.push_status == "failed"
        assert len(email_sender.sent) == 1

        outcomes = _outcomes(db_session, intent.claim_id)
        assert outcomes[DeliveryChannel.EMAIL].status == DeliveryStatus.SENT
        assert outcomes[DeliveryChannel.PUSH].status == DeliveryStatus.FAILED
        assert outcomes[DeliveryChannel.PUSH].error == "push service 500"

    @pytest.mark.asyncio
    async def test_email_failure_skips_push_and_keeps_claim(
        self, db_session, make_user, push_user_fields, email_sender, push_sender
    ):
        user = make_user(**push_user_fields)
        intent = _claimed_intent(db_session, user)
        email_sender.fail_for[user.email] = "Resend API error: 500"

        result = await DeliveryDispatcher(db_session, email_sender, push_sender).dispatch(intent)

        assert not result.delivered
        assert result.email_status == "failed"
        assert push_sender.sent == []

        ledger = NotificationLedger(db_session)
        assert ledger.is_claimed(ClaimKey(user.id, DEFAULT_CHANNEL_GROUP, "2024-01-15"))

        outcomes = _outcomes(db_session, intent.claim_id)
        assert outcomes[DeliveryChannel.EMAIL].status == DeliveryStatus.FAILED
        assert DeliveryChannel.PUSH not in outcomes

    @pytest.mark.asyncio
    async def test_email_sender_exception_is_recorded_as_failure(
        self, db_session, make_user, email_sender, push_sender
    ):
        user = make_user()
        intent = _claimed_intent(db_session, user)
        email_sender.raise_for[user.email] = RuntimeError("connection reset")

        result = await DeliveryDispatcher(db_session, email_sender, push_sender).dispatch(intent)

        assert result.email_status == "failed"
        assert "connection reset" in result.errors[0]

    @pytest.mark.asyncio
    async def test_missing_push_subscription_is_skipped(
        self, db_session, make_user, email_sender, push_sender
    ):
        user = make_user()
        intent = _claimed_intent(db_session, user)

        result = await DeliveryDispatcher(db_session, email_sender, push_sender).dispatch(intent)

        assert result.delivered
        assert result.push_status == "skipped"
        assert push_sender.sent == []
        assert _outcomes(db_session, intent.claim_id)[DeliveryChannel.PUSH].status == DeliveryStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_partial_push_subscription_is_treated_as_absent(
        self, db_session, make_user, email_sender, push_sender
    ):
        user = make_user(push_endpoint="https://push.example.com/send/abc123")
        intent = _claimed_intent(db_session, user)

        result = await DeliveryDispatcher(db_session, email_sender, push_sender).dispatch(intent)

        assert result.push_status == "skipped"
        assert push_sender.sent == []

    @pytest.mark.asyncio
    async def test_gone_push_subscription_is_cleared(
        self, db_session, make_user, push_user_fields, email_sender, make_push_sender
    ):
        user = make_user(**push_user_fields)
        intent = _claimed_intent(db_session, user)
        gone_push = make_push_sender(
            ChannelResult(success=False, error="Subscription gone (410)", gone=True)
        )

        result = await DeliveryDispatcher(db_session, email_sender, gone_push).dispatch(intent)

        assert result.delivered
        assert result.push_status == "failed"

        db_session.expire_all()
        stored = db_session.get(User, user.id)
        assert stored.push_endpoint is None
        assert stored.push_subscription is None


class TestTimeouts:
    """Slow providers end up as recorded failures, never as missing outcomes."""

    @pytest.mark.asyncio
    async def test_slow_email_provider_is_a_failed_send(
        self, db_session, make_user, email_sender, push_sender
    ):
        user = make_user()
        email_sender.delay_for[user.email] = 1.0
        intent = _claimed_intent(db_session, user)

        result = await DeliveryDispatcher(
            db_session, email_sender, push_sender, send_timeout=0.05
        ).dispatch(intent)

        assert not result.delivered
        assert "timed out" in result.errors[0]
        outcome = _outcomes(db_session, intent.claim_id)[DeliveryChannel.EMAIL]
        assert outcome.status == DeliveryStatus.FAILED
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_interrupted_before_email_records_email_failure(
        self, db_session, make_user, email_sender
    ):
        user = make_user()
        intent = _claimed_intent(db_session, user)

        result = DeliveryDispatcher(db_session, email_sender).record_interrupted(
            intent, "Delivery timed out after 20.0s"
        )

        assert result.email_status == "failed"
        assert result.push_status == "skipped"
        outcomes = _outcomes(db_session, intent.claim_id)
        assert set(outcomes) == {DeliveryChannel.EMAIL}
        assert outcomes[DeliveryChannel.EMAIL].error == "Delivery timed out after 20.0s"

    @pytest.mark.asyncio
    async def test_interrupted_after_email_keeps_it_and_fails_push(
        self, db_session, make_user, push_user_fields, email_sender
    ):
        user = make_user(**push_user_fields)
        intent = _claimed_intent(db_session, user)
        db_session.add(
            DeliveryOutcome(
                claim_id=intent.claim_id,
                user_id=user.id,
                channel=DeliveryChannel.EMAIL,
                status=DeliveryStatus.SENT,
            )
        )
        db_session.commit()

        result = DeliveryDispatcher(db_session, email_sender).record_interrupted(
            intent, "Delivery timed out after 20.0s"
        )

        assert result.delivered
        assert result.push_status == "failed"
        outcomes = _outcomes(db_session, intent.claim_id)
        assert outcomes[DeliveryChannel.EMAIL].status == DeliveryStatus.SENT
        assert outcomes[DeliveryChannel.PUSH].status == DeliveryStatus.FAILED
