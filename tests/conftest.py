import asyncio
from datetime import date
from typing import Callable, Dict, Generator, List, Optional, Tuple, Union

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dailyping.db.models import Base, Entry, EntrySubItem, SubscriptionState, Tone, User
from dailyping.models.billing_models import BillingLookup
from dailyping.models.notification_models import (
    ChannelResult,
    NotificationMessage,
    PushSubscription,
)


# Test database setup
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture
def test_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)
    session = session_maker()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# Test data factories
@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make_user(**overrides) -> User:
        counter["n"] += 1
        n = counter["n"]
        values = dict(
            email=f"user{n}@example.com",
            username=f"user{n}",
            timezone="America/New_York",
            trigger_time="08:00",
            tone=Tone.GENTLE,
            notifications_enabled=True,
            subscription_state=SubscriptionState.INACTIVE,
        )
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_entry(db_session: Session) -> Callable[..., Entry]:
    def _make_entry(
        user: User,
        day: Union[str, date],
        content: str = "Ship the release",
        reminders: Optional[List[str]] = None,
        sub_items: Optional[List[Tuple[str, List[str]]]] = None,
    ) -> Entry:
        entry = Entry(
            user_id=user.id,
            day=day if isinstance(day, str) else day.isoformat(),
            content=content,
            reminders=reminders or [],
            sub_items=[
                EntrySubItem(position=position, text=text, reminders=item_reminders)
                for position, (text, item_reminders) in enumerate(sub_items or [])
            ],
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return _make_entry


PUSH_SUBSCRIPTION = PushSubscription(
    endpoint="https://push.example.com/send/abc123",
    p256dh="BPcMbnWQL5GOYX",
    auth="k8JV6sjdbhAi",
)


@pytest.fixture
def push_user_fields() -> Dict[str, str]:
    return {
        "push_endpoint": PUSH_SUBSCRIPTION.endpoint,
        "push_p256dh": PUSH_SUBSCRIPTION.p256dh,
        "push_auth": PUSH_SUBSCRIPTION.auth,
    }


# Fake collaborators
class FakeEmailSender:
    """
    Records every send; failures, exceptions and delays are set per address.

    ``delay_once_for`` slows down only the next send to an address.
    """

    def __init__(self):
        self.sent: List[Tuple[str, NotificationMessage]] = []
        self.fail_for: Dict[str, str] = {}
        self.raise_for: Dict[str, Exception] = {}
        self.delay_for: Dict[str, float] = {}
        self.delay_once_for: Dict[str, float] = {}

    async def send_email(self, address: str, message: NotificationMessage) -> ChannelResult:
        if address in self.delay_once_for:
            await asyncio.sleep(self.delay_once_for.pop(address))
        if address in self.delay_for:
            await asyncio.sleep(self.delay_for[address])
        if address in self.raise_for:
            raise self.raise_for[address]
        self.sent.append((address, message))
        if address in self.fail_for:
            return ChannelResult(success=False, error=self.fail_for[address])
        return ChannelResult(success=True, message_id=f"msg-{len(self.sent)}")

    def addresses(self) -> List[str]:
        return [address for address, _ in self.sent]


class FakePushSender:
    def __init__(self, result: Optional[ChannelResult] = None):
        self.sent: List[Tuple[PushSubscription, dict]] = []
        self.result = result or ChannelResult(success=True)

    async def send_push(self, subscription: PushSubscription, payload: dict) -> ChannelResult:
        self.sent.append((subscription, payload))
        return self.result


class FakeBillingClient:
    """Answers from a reference -> BillingLookup map; exceptions are raised, floats are delays."""

    def __init__(self, answers: Optional[Dict[str, Union[BillingLookup, Exception, float]]] = None):
        self.answers = answers or {}
        self.calls: List[str] = []

    async def get_subscription_status(self, reference: str) -> BillingLookup:
        self.calls.append(reference)
        answer = self.answers.get(reference, BillingLookup.failed("no answer configured"))
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, float):
            await asyncio.sleep(answer)
            return BillingLookup.found("active")
        return answer


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def push_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def make_push_sender() -> Callable[..., FakePushSender]:
    return FakePushSender


@pytest.fixture
def make_billing_client() -> Callable[..., FakeBillingClient]:
    return FakeBillingClient
