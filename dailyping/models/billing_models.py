from dataclasses import dataclass
from typing import Literal, Optional

LookupOutcome = Literal["found", "not_found", "error"]

# Statuses the billing provider is known to report
KNOWN_EXTERNAL_STATUSES = frozenset(
    {
        "active",
        "trialing",
        "past_due",
        "canceled",
        "unpaid",
        "incomplete",
        "incomplete_expired",
        "paused",
    }
)
ENTITLED_EXTERNAL_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class BillingLookup:
    """Result of asking the billing provider about one subscription."""

    outcome: LookupOutcome
    status: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, status: str) -> "BillingLookup":
        return cls(outcome="found", status=status)

    @classmethod
    def not_found(cls) -> "BillingLookup":
        return cls(outcome="not_found")

    @classmethod
    def failed(cls, error: str) -> "BillingLookup":
        return cls(outcome="error", error=error)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Last-known external status for one user, compared against local state."""

    user_id: str
    reference: str
    local_state: str
    lookup: BillingLookup


@dataclass
class ReconciliationSummary:
    users_checked: int = 0
    updated: int = 0
    unchanged: int = 0
    downgraded_missing: int = 0
    lookup_failures: int = 0
    conflicts: int = 0
    unknown_statuses: int = 0
    user_failures: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)
