"""
One-off data migrations.

Older rows stored the entitlement as a boolean (or its string form) before
``subscription_state`` became a four-state enum. Run with
``python -m dailyping.db.migrations`` to rewrite them in place.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from .models import SubscriptionState
from .session import SessionLocal

from dailyping.utils.logging import get_logger

logger = get_logger()

_TRUTHY = {"true", "1", "yes", "t"}
_FALSY = {"false", "0", "no", "f", ""}


def coerce_subscription_state(value: Any) -> SubscriptionState:
    """Map legacy boolean-ish values and enum names/values onto ``SubscriptionState``."""
    if isinstance(value, SubscriptionState):
        return value
    if value is None:
        return SubscriptionState.INACTIVE
    if isinstance(value, bool):
        return SubscriptionState.ACTIVE if value else SubscriptionState.INACTIVE
    if isinstance(value, int):
        if value in (0, 1):
            return SubscriptionState.ACTIVE if value else SubscriptionState.INACTIVE
        raise ValueError(f"Unrecognized subscription state: {value!r}")

    normalized = str(value).strip().lower()
    if normalized in _TRUTHY:
        return SubscriptionState.ACTIVE
    if normalized in _FALSY:
        return SubscriptionState.INACTIVE
    for state in SubscriptionState:
        if normalized in (state.value, state.name.lower()):
            return state
    raise ValueError(f"Unrecognized subscription state: {value!r}")


def migrate_legacy_subscription_states(db_session: Session) -> int:
    """Rewrite every non-canonical ``users.subscription_state``. Returns rows changed."""
    canonical = {state.name for state in SubscriptionState}
    rows = db_session.execute(text("SELECT id, subscription_state FROM users")).all()

    changed = 0
    for user_id, raw_state in rows:
        if raw_state in canonical:
            continue
        try:
            state = coerce_subscription_state(raw_state)
        except ValueError:
            logger.warning(f"Leaving user {user_id} untouched, state {raw_state!r}")
            continue
        db_session.execute(
            text("UPDATE users SET subscription_state = :state WHERE id = :id"),
            {"state": state.name, "id": user_id},
        )
        changed += 1

    db_session.commit()
    logger.info(f"Migrated {changed} legacy subscription states.")
    return changed


if __name__ == "__main__":
    session = SessionLocal()
    try:
        migrate_legacy_subscription_states(session)
    finally:
        session.close()
