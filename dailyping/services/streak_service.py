from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dailyping.db.models import User
from dailyping.models.streak_models import StreakState
from dailyping.utils.datetime_utils import previous_day
from dailyping.utils.errors import BusinessLogicError, NotFoundError
from dailyping.utils.logging import get_logger

logger = get_logger()

MAX_STREAK_WRITE_ATTEMPTS = 3


def advance_streak(state: StreakState, day: date) -> StreakState:
    """
    Apply one submission on local calendar ``day`` to ``state``.

    Same day again is a no-op, the day after the last entry extends the streak
    and anything else (a gap, or no prior entry) restarts it at 1.
    """
    if state.last_entry_date == day:
        return state

    if state.last_entry_date is not None and state.last_entry_date == previous_day(day):
        current = state.current + 1
    else:
        current = 1

    return StreakState(current=current, max=max(state.max, current), last_entry_date=day)


class StreakService:
    def __init__(self, db_session: Session):
        self.db = db_session

    def get_state(self, user_id: str) -> StreakState:
        row = self.db.execute(
            select(
                User.streak_current, User.streak_max, User.streak_last_entry_date
            ).where(User.id == user_id)
        ).first()
        if row is None:
            raise NotFoundError(f"User {user_id} not found")
        return StreakState(current=row[0], max=row[1], last_entry_date=row[2])

    def record_submission(self, user_id: str, day: date) -> StreakState:
        """
        Count a submission for ``day`` exactly once.

        The write is conditional on ``streak_last_entry_date`` still holding the
        value we read; on a lost race the state is re-read and re-applied, which
        turns a concurrent same-day submission into a no-op.
        """
        for attempt in range(1, MAX_STREAK_WRITE_ATTEMPTS + 1):
            observed = self.get_state(user_id)
            updated = advance_streak(observed, day)
            if updated == observed:
                return observed

            if self._compare_and_set(user_id, observed.last_entry_date, updated):
                self.db.commit()
                logger.info(
                    f"Streak for user {user_id} on {day.isoformat()}: "
                    f"current={updated.current} max={updated.max}"
                )
                return updated

            self.db.rollback()
            logger.debug(f"Streak write conflict for user {user_id} (attempt {attempt})")

        raise BusinessLogicError(
            f"Could not record streak for user {user_id}", "STREAK_CONFLICT"
        )

    def _compare_and_set(
        self, user_id: str, expected_last: Optional[date], updated: StreakState
    ) -> bool:
        if expected_last is None:
            last_matches = User.streak_last_entry_date.is_(None)
        else:
            last_matches = User.streak_last_entry_date == expected_last

        result = self.db.execute(
            update(User)
            .where(User.id == user_id, last_matches)
            .values(
                streak_current=updated.current,
                streak_max=updated.max,
                streak_last_entry_date=updated.last_entry_date,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
