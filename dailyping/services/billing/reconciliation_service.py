import asyncio
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from dailyping.config.settings import settings
from dailyping.db.models import SubscriptionEvent, SubscriptionState
from dailyping.models.billing_models import (
    ENTITLED_EXTERNAL_STATUSES,
    KNOWN_EXTERNAL_STATUSES,
    BillingLookup,
    ReconciliationSummary,
    SubscriptionSnapshot,
)
from dailyping.services.billing.stripe_client import BillingClient
from dailyping.services.user_repository import UserRepository
from dailyping.utils.datetime_utils import utc_now
from dailyping.utils.logging import get_logger

REASON_STATUS_CHANGED = "external_status"
REASON_SUBSCRIPTION_MISSING = "subscription_missing"


def map_external_status(status: Optional[str]) -> Optional[SubscriptionState]:
    """Local entitlement for a provider status, or None if the status is unknown."""
    if not status:
        return None
    status = status.strip().lower()
    if status in ENTITLED_EXTERNAL_STATUSES:
        return SubscriptionState.ACTIVE
    if status in KNOWN_EXTERNAL_STATUSES:
        return SubscriptionState.INACTIVE
    return None


def decide_transition(
    snapshot: SubscriptionSnapshot,
) -> Tuple[Optional[SubscriptionState], Optional[str]]:
    """
    Target state and reason for one snapshot.

    ``(None, None)`` means "leave it alone": the lookup failed or reported a
    status we do not understand, and the last known state stays authoritative.
    """
    lookup = snapshot.lookup
    if lookup.outcome == "not_found":
        return SubscriptionState.INACTIVE, REASON_SUBSCRIPTION_MISSING
    if lookup.outcome == "found":
        target = map_external_status(lookup.status)
        if target is None:
            return None, None
        return target, REASON_STATUS_CHANGED
    return None, None


class SubscriptionReconciler:
    """
    Keeps ``users.subscription_state`` in line with the billing provider.

    Runs independently of the trigger tick. Writes are compare-and-set against
    the state read at the start of the pass, so a concurrent reconciliation
    that got there first wins and this pass counts a conflict.
    """

    def __init__(
        self,
        db_session: Session,
        billing_client: BillingClient,
        repository: Optional[UserRepository] = None,
        max_concurrency: Optional[int] = None,
        per_user_timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ):
        self.db = db_session
        self.billing = billing_client
        self.users = repository or UserRepository(db_session)
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENT_USERS
        self.per_user_timeout = per_user_timeout or settings.PER_USER_TIMEOUT_SECONDS
        self.logger = get_logger().bind(request_id=request_id) if request_id else get_logger()

    async def on_reconciliation_tick(
        self, now: Optional[datetime] = None
    ) -> ReconciliationSummary:
        now = now or utc_now()
        summary = ReconciliationSummary()

        references = self.users.load_subscription_references()
        summary.users_checked = len(references)
        if not references:
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(user_id: str, reference: str, local_state: SubscriptionState):
            async with semaphore:
                try:
                    await self.reconcile_user(user_id, reference, local_state, summary)
                except Exception as e:
                    summary.user_failures += 1
                    self.db.rollback()
                    self.logger.error(
                        f"Reconciliation failed for user {user_id}: {e}", exc_info=True
                    )

        await asyncio.gather(
            *(guarded(user_id, ref, state) for user_id, ref, state in references)
        )

        self.logger.info(
            f"Subscription reconciliation at {now.isoformat()} finished: {summary.to_dict()}"
        )
        return summary

    async def _lookup(self, reference: str) -> BillingLookup:
        try:
            return await asyncio.wait_for(
                self.billing.get_subscription_status(reference),
                timeout=self.per_user_timeout,
            )
        except asyncio.TimeoutError:
            return BillingLookup.failed(
                f"Lookup timed out after {self.per_user_timeout}s"
            )

    async def reconcile_user(
        self,
        user_id: str,
        reference: str,
        local_state: SubscriptionState,
        summary: ReconciliationSummary,
    ) -> None:
        snapshot = SubscriptionSnapshot(
            user_id=user_id,
            reference=reference,
            local_state=local_state.value,
            lookup=await self._lookup(reference),
        )

        if snapshot.lookup.outcome == "error":
            summary.lookup_failures += 1
            self.logger.warning(
                f"Billing lookup failed for user {user_id}, keeping "
                f"'{local_state.value}': {snapshot.lookup.error}"
            )
            return

        target, reason = decide_transition(snapshot)
        if target is None:
            summary.unknown_statuses += 1
            self.logger.warning(
                f"Unknown billing status '{snapshot.lookup.status}' for user {user_id}, "
                f"keeping '{local_state.value}'"
            )
            return

        if target == local_state:
            summary.unchanged += 1
            return

        if not self.users.compare_and_set_subscription(user_id, local_state, target):
            self.db.rollback()
            summary.conflicts += 1
            self.logger.info(
                f"Subscription state of user {user_id} changed concurrently, skipping"
            )
            return

        self.db.add(
            SubscriptionEvent(
                user_id=user_id,
                previous_state=local_state,
                new_state=target,
                external_status=snapshot.lookup.status,
                reason=reason,
            )
        )
        self.db.commit()

        summary.updated += 1
        if reason == REASON_SUBSCRIPTION_MISSING:
            summary.downgraded_missing += 1
        self.logger.info(
            f"Subscription state of user {user_id}: {local_state.value} -> {target.value} ({reason})"
        )
