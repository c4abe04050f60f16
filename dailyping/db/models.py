from typing import List, Optional
from datetime import datetime, date
import enum
import uuid

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    JSON,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from dailyping.models.notification_models import PushSubscription


class Base(DeclarativeBase):
    pass


def new_id() -> str:
    return str(uuid.uuid4())


# Enums
class SubscriptionState(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIALING = "trialing"
    CANCELED = "canceled"


class Tone(enum.Enum):
    GENTLE = "gentle"
    MOTIVATIONAL = "motivational"
    SNARKY = "snarky"


class TriggerKind(enum.Enum):
    DAILY_PING = "daily_ping"
    ENTRY_REMINDER = "entry_reminder"
    SUB_ITEM_REMINDER = "sub_item_reminder"


class DeliveryChannel(enum.Enum):
    EMAIL = "email"
    PUSH = "push"


class DeliveryStatus(enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False
    )  # RFC 5321 max length
    username: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    trigger_time: Mapped[Optional[str]] = mapped_column(String(5))
    tone: Mapped[Tone] = mapped_column(Enum(Tone), default=Tone.GENTLE, nullable=False)
    daily_mode: Mapped[str] = mapped_column(String(32), default="goal", nullable=False)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    # Web push subscription (all three parts or none)
    push_endpoint: Mapped[Optional[str]] = mapped_column(Text)
    push_p256dh: Mapped[Optional[str]] = mapped_column(String(255))
    push_auth: Mapped[Optional[str]] = mapped_column(String(255))

    # Billing
    subscription_state: Mapped[SubscriptionState] = mapped_column(
        Enum(SubscriptionState), default=SubscriptionState.INACTIVE, nullable=False
    )
    external_subscription_id: Mapped[Optional[str]] = mapped_column(String(255))

    # Streak tracking
    streak_current: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak_max: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak_last_entry_date: Mapped[Optional[date]] = mapped_column(Date)

    # Relationships
    entries: Mapped[List["Entry"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("streak_current >= 0", name="ck_users_streak_current_non_negative"),
        CheckConstraint("streak_max >= streak_current", name="ck_users_streak_max_gte_current"),
        Index("idx_users_notifications_enabled", "notifications_enabled"),
        Index("idx_users_external_subscription_id", "external_subscription_id"),
    )

    @property
    def push_subscription(self) -> Optional[PushSubscription]:
        if not (self.push_endpoint and self.push_p256dh and self.push_auth):
            return None
        return PushSubscription(
            endpoint=self.push_endpoint, p256dh=self.push_p256dh, auth=self.push_auth
        )


class Entry(Base, AuditMixin):
    """A user's submission for one local calendar day"""

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    content: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[str] = mapped_column(String(32), default="goal", nullable=False)
    reminders: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="entries")
    sub_items: Mapped[List["EntrySubItem"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="EntrySubItem.position",
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_entries_user_day"),
        Index("idx_entries_user_id", "user_id"),
        Index("idx_entries_day", "day"),
    )


class EntrySubItem(Base, AuditMixin):
    __tablename__ = "entry_sub_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminders: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # Relationships
    entry: Mapped["Entry"] = relationship(back_populates="sub_items")

    # Constraints
    __table_args__ = (
        UniqueConstraint("entry_id", "position", name="uq_entry_sub_items_position"),
        CheckConstraint("position >= 0", name="ck_entry_sub_items_position"),
        Index("idx_entry_sub_items_entry_id", "entry_id"),
    )


class NotificationClaim(Base):
    """Idempotency ledger row. Never updated; its existence means 'already sent'."""

    __tablename__ = "notification_claims"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    period_key: Mapped[str] = mapped_column(String(128), nullable=False)
    trigger_kind: Mapped[Optional[TriggerKind]] = mapped_column(Enum(TriggerKind))
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    outcomes: Mapped[List["DeliveryOutcome"]] = relationship(
        back_populates="claim", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "user_id", "channel", "period_key", name="uq_notif_claims_user_channel_period"
        ),
        Index("idx_notif_claims_claimed_at", "claimed_at"),
    )


class DeliveryOutcome(Base):
    __tablename__ = "delivery_outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    claim_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("notification_claims.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel: Mapped[DeliveryChannel] = mapped_column(Enum(DeliveryChannel), nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), nullable=False)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    error: Mapped[Optional[str]] = mapped_column(Text)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    claim: Mapped["NotificationClaim"] = relationship(back_populates="outcomes")

    # Constraints
    __table_args__ = (
        UniqueConstraint("claim_id", "channel", name="uq_delivery_outcomes_claim_channel"),
        Index("idx_delivery_outcomes_user_id", "user_id"),
        Index("idx_delivery_outcomes_status", "status"),
    )


class SubscriptionEvent(Base):
    """Audit trail of entitlement transitions applied by reconciliation"""

    __tablename__ = "subscription_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    previous_state: Mapped[SubscriptionState] = mapped_column(
        Enum(SubscriptionState), nullable=False
    )
    new_state: Mapped[SubscriptionState] = mapped_column(
        Enum(SubscriptionState), nullable=False
    )
    external_status: Mapped[Optional[str]] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_subscription_events_user_id", "user_id"),)
