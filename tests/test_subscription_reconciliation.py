import pytest
from sqlalchemy import select

from dailyping.db.models import SubscriptionEvent, SubscriptionState, User
from dailyping.models.billing_models import BillingLookup
from dailyping.services.billing.reconciliation_service import (
    SubscriptionReconciler,
    map_external_status,
)
from dailyping.services.user_repository import UserRepository


def _state(db_session, user_id) -> SubscriptionState:
    db_session.expire_all()
    return db_session.get(User, user_id).subscription_state


def _events(db_session, user_id):
    return (
        db_session.execute(select(SubscriptionEvent).where(SubscriptionEvent.user_id == user_id))
        .scalars()
        .all()
    )


class TestStatusMapping:
    @pytest.mark.parametrize("status", ["active", "trialing", "ACTIVE", " trialing "])
    def test_entitled(self, status):
        assert map_external_status(status) == SubscriptionState.ACTIVE

    @pytest.mark.parametrize(
        "status", ["past_due", "canceled", "unpaid", "incomplete", "incomplete_expired", "paused"]
    )
    def test_not_entitled(self, status):
        assert map_external_status(status) == SubscriptionState.INACTIVE

    @pytest.mark.parametrize("status", [None, "", "on_vacation"])
    def test_unknown(self, status):
        assert map_external_status(status) is None


class TestReconciliation:
    @pytest.mark.asyncio
    async def test_trialing_activates_then_failed_lookup_keeps_active(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(external_subscription_id="sub_1")
        client = make_billing_client({"sub_1": BillingLookup.found("trialing")})
        reconciler = SubscriptionReconciler(db_session, client)

        summary = await reconciler.on_reconciliation_tick()

        assert summary.updated == 1
        assert _state(db_session, user.id) == SubscriptionState.ACTIVE

        client.answers["sub_1"] = BillingLookup.failed("HTTP 503")
        summary = await reconciler.on_reconciliation_tick()

        assert summary.lookup_failures == 1
        assert summary.updated == 0
        assert _state(db_session, user.id) == SubscriptionState.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_subscription_downgrades_immediately(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(
            external_subscription_id="sub_gone", subscription_state=SubscriptionState.ACTIVE
        )
        client = make_billing_client({"sub_gone": BillingLookup.not_found()})

        summary = await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert summary.downgraded_missing == 1
        assert _state(db_session, user.id) == SubscriptionState.INACTIVE
        [event] = _events(db_session, user.id)
        assert event.previous_state == SubscriptionState.ACTIVE
        assert event.new_state == SubscriptionState.INACTIVE
        assert event.reason == "subscription_missing"

    @pytest.mark.asyncio
    async def test_past_due_downgrades(self, db_session, make_user, make_billing_client):
        user = make_user(
            external_subscription_id="sub_1", subscription_state=SubscriptionState.ACTIVE
        )
        client = make_billing_client({"sub_1": BillingLookup.found("past_due")})

        await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert _state(db_session, user.id) == SubscriptionState.INACTIVE
        assert _events(db_session, user.id)[0].external_status == "past_due"

    @pytest.mark.asyncio
    async def test_unchanged_state_is_not_written(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(
            external_subscription_id="sub_1", subscription_state=SubscriptionState.ACTIVE
        )
        client = make_billing_client({"sub_1": BillingLookup.found("active")})

        summary = await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert summary.unchanged == 1
        assert summary.updated == 0
        assert _events(db_session, user.id) == []

    @pytest.mark.asyncio
    async def test_unknown_status_keeps_state(self, db_session, make_user, make_billing_client):
        user = make_user(
            external_subscription_id="sub_1", subscription_state=SubscriptionState.ACTIVE
        )
        client = make_billing_client({"sub_1": BillingLookup.found("something_new")})

        summary = await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert summary.unknown_statuses == 1
        assert _state(db_session, user.id) == SubscriptionState.ACTIVE

    @pytest.mark.asyncio
    async def test_users_without_reference_are_skipped(
        self, db_session, make_user, make_billing_client
    ):
        make_user()
        make_user(external_subscription_id="")
        client = make_billing_client()

        summary = await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert summary.users_checked == 0
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_trialing_local_state_becomes_active(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(
            external_subscription_id="sub_1", subscription_state=SubscriptionState.TRIALING
        )
        client = make_billing_client({"sub_1": BillingLookup.found("trialing")})

        await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert _state(db_session, user.id) == SubscriptionState.ACTIVE


class StaleRepository(UserRepository):
    """Reports the state as it was before a concurrent write landed."""

    def __init__(self, db_session, stale_state):
        super().__init__(db_session)
        self.stale_state = stale_state

    def load_subscription_references(self):
        return [
            (user_id, reference, self.stale_state)
            for user_id, reference, _ in super().load_subscription_references()
        ]


class TestConcurrencyAndIsolation:
    @pytest.mark.asyncio
    async def test_compare_and_set_conflict_does_not_clobber(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(
            external_subscription_id="sub_1", subscription_state=SubscriptionState.CANCELED
        )
        client = make_billing_client({"sub_1": BillingLookup.found("active")})
        reconciler = SubscriptionReconciler(
            db_session,
            client,
            repository=StaleRepository(db_session, SubscriptionState.INACTIVE),
        )

        summary = await reconciler.on_reconciliation_tick()

        assert summary.conflicts == 1
        assert summary.updated == 0
        assert _state(db_session, user.id) == SubscriptionState.CANCELED
        assert _events(db_session, user.id) == []

    @pytest.mark.asyncio
    async def test_one_user_failure_is_isolated(
        self, db_session, make_user, make_billing_client
    ):
        broken = make_user(external_subscription_id="sub_broken")
        healthy = make_user(external_subscription_id="sub_ok")
        client = make_billing_client(
            {
                "sub_broken": RuntimeError("unexpected payload"),
                "sub_ok": BillingLookup.found("active"),
            }
        )

        summary = await SubscriptionReconciler(db_session, client).on_reconciliation_tick()

        assert summary.user_failures == 1
        assert summary.updated == 1
        assert _state(db_session, broken.id) == SubscriptionState.INACTIVE
        assert _state(db_session, healthy.id) == SubscriptionState.ACTIVE

    @pytest.mark.asyncio
    async def test_slow_lookup_counts_as_transient(
        self, db_session, make_user, make_billing_client
    ):
        user = make_user(
            external_subscription_id="sub_slow", subscription_state=SubscriptionState.INACTIVE
        )
        client = make_billing_client({"sub_slow": 5.0})

        summary = await SubscriptionReconciler(
            db_session, client, per_user_timeout=0.05
        ).on_reconciliation_tick()

        assert summary.lookup_failures == 1
        assert _state(db_session, user.id) == SubscriptionState.INACTIVE
