from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class PushSubscription:
    """Browser push subscription as handed out by the Push API."""

    endpoint: str
    p256dh: str
    auth: str

    def to_subscription_info(self) -> dict:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(frozen=True)
class ChannelResult:
    """Result of a single channel send attempt."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    # Provider said the destination no longer exists (e.g. push 404/410)
    gone: bool = False


@dataclass(frozen=True)
class ClaimKey:
    user_id: str
    channel: str
    period_key: str


@dataclass(frozen=True)
class SubItemSnapshot:
    position: int
    text: str
    reminders: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EntrySnapshot:
    id: str
    day: date
    content: str
    reminders: Tuple[str, ...] = ()
    sub_items: Tuple[SubItemSnapshot, ...] = ()


@dataclass(frozen=True)
class UserSnapshot:
    """Detached, read-only view of a user taken at the start of a pass."""

    id: str
    email: str
    username: Optional[str]
    timezone: Optional[str]
    trigger_time: Optional[str]
    tone: str
    push_subscription: Optional[PushSubscription] = None


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    body: str
    html: str
    push_title: str


@dataclass(frozen=True)
class DueTrigger:
    """A trigger whose time matches the user's local clock on this tick."""

    kind: str
    period_key: str
    text: Optional[str] = None


@dataclass(frozen=True)
class NotificationIntent:
    """A claimed notification ready to hand to the dispatcher."""

    claim_id: str
    user: UserSnapshot
    trigger: DueTrigger
    message: NotificationMessage


@dataclass
class DispatchResult:
    claim_id: str
    email_status: str
    push_status: str
    errors: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.email_status == "sent"


@dataclass
class TickSummary:
    users_evaluated: int = 0
    triggers_due: int = 0
    claims_won: int = 0
    claims_rejected: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    pushes_sent: int = 0
    pushes_failed: int = 0
    user_failures: int = 0
    delivery_timeouts: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)
