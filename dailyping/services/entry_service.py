from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from dailyping.db.models import Entry, EntrySubItem, User
from dailyping.db.session import get_sync_session
from dailyping.schemas.entry_schemas import (
    CreateEntryRequest,
    EntryResponse,
    ReplaceSubItemsRequest,
    StreakResponse,
    SubItemRequest,
    SubItemResponse,
    SubmissionResponse,
    UpdateEntryRequest,
)
from dailyping.services.streak_service import StreakService
from dailyping.utils.datetime_utils import local_day, utc_now
from dailyping.utils.errors import DuplicateEntryError, NotFoundError
from dailyping.utils.logging import get_logger

logger = get_logger()


def to_entry_response(entry: Entry) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        user_id=entry.user_id,
        day=entry.day,
        content=entry.content,
        mode=entry.mode,
        note=entry.note or "",
        completed=entry.completed,
        edited=entry.edited,
        reminders=list(entry.reminders or []),
        sub_items=[
            SubItemResponse(
                position=item.position,
                text=item.text,
                completed=item.completed,
                reminders=list(item.reminders or []),
            )
            for item in entry.sub_items
        ],
        created_at=entry.created_at,
    )


def _build_sub_items(items: List[SubItemRequest]) -> List[EntrySubItem]:
    return [
        EntrySubItem(
            position=position,
            text=item.text.strip(),
            completed=item.completed,
            reminders=list(item.reminders),
        )
        for position, item in enumerate(items)
    ]


class EntryService:
    """Reads and edits of a user's daily entries"""

    def __init__(self, db_session: Session):
        self.db = db_session

    async def get_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found", "USER_NOT_FOUND")
        return user

    async def get_entry_for_day(self, user_id: str, day: date) -> Optional[Entry]:
        result = self.db.execute(
            select(Entry)
            .options(selectinload(Entry.sub_items))
            .where(Entry.user_id == user_id, Entry.day == day.isoformat())
        )
        return result.scalar_one_or_none()

    async def get_today_entry(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[EntryResponse]:
        """Entry for the user's current local day, or None if not submitted yet"""
        user = await self.get_user(user_id)
        today = local_day(now or utc_now(), user.timezone)
        entry = await self.get_entry_for_day(user_id, today)
        return to_entry_response(entry) if entry else None

    async def list_entries(self, user_id: str, limit: int = 30) -> List[EntryResponse]:
        await self.get_user(user_id)
        result = self.db.execute(
            select(Entry)
            .options(selectinload(Entry.sub_items))
            .where(Entry.user_id == user_id)
            .order_by(Entry.day.desc())
            .limit(limit)
        )
        return [to_entry_response(entry) for entry in result.scalars().all()]

    async def _get_owned_entry(self, user_id: str, entry_id: str) -> Entry:
        result = self.db.execute(
            select(Entry)
            .options(selectinload(Entry.sub_items))
            .where(Entry.id == entry_id, Entry.user_id == user_id)
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError(f"Entry {entry_id} not found", "ENTRY_NOT_FOUND")
        return entry

    async def update_entry(
        self, user_id: str, entry_id: str, update_data: UpdateEntryRequest
    ) -> EntryResponse:
        entry = await self._get_owned_entry(user_id, entry_id)

        if update_data.content is not None and update_data.content.strip() != entry.content:
            entry.content = update_data.content.strip()
            entry.edited = True
        if update_data.note is not None and update_data.note != entry.note:
            entry.note = update_data.note
            entry.edited = True
        if update_data.completed is not None:
            entry.completed = update_data.completed
        if update_data.reminders is not None:
            entry.reminders = list(update_data.reminders)

        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"Updated entry {entry_id} for user {user_id}")
        return to_entry_response(entry)

    async def replace_sub_items(
        self, user_id: str, entry_id: str, request: ReplaceSubItemsRequest
    ) -> EntryResponse:
        """Replace the whole sub-item list; positions follow the request order"""
        entry = await self._get_owned_entry(user_id, entry_id)

        entry.sub_items.clear()
        # Old rows must be gone before new ones reuse their positions
        self.db.flush()
        entry.sub_items.extend(_build_sub_items(request.sub_items))

        self.db.commit()
        self.db.refresh(entry)
        logger.info(
            f"Replaced sub-items of entry {entry_id} ({len(request.sub_items)} items)"
        )
        return to_entry_response(entry)


class SubmissionService:
    """Creates the day's entry and feeds the streak state machine"""

    def __init__(self, db_session: Session, streak_service: Optional[StreakService] = None):
        self.db = db_session
        self.entries = EntryService(db_session)
        self.streaks = streak_service or StreakService(db_session)

    async def submit(
        self,
        user_id: str,
        request: CreateEntryRequest,
        now: Optional[datetime] = None,
    ) -> SubmissionResponse:
        user = await self.entries.get_user(user_id)
        day = request.day or local_day(now or utc_now(), user.timezone)

        if await self.entries.get_entry_for_day(user_id, day):
            raise DuplicateEntryError(f"An entry for {day.isoformat()} already exists")

        entry = Entry(
            user_id=user_id,
            day=day.isoformat(),
            content=request.content,
            mode=request.mode or user.daily_mode,
            note=request.note,
            reminders=list(request.reminders),
            sub_items=_build_sub_items(request.sub_items),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent submission for the same day
            self.db.rollback()
            raise DuplicateEntryError(f"An entry for {day.isoformat()} already exists")

        self.db.refresh(entry)
        logger.info(f"User {user_id} submitted entry for {day.isoformat()}")

        streak = self.streaks.record_submission(user_id, day)
        return SubmissionResponse(
            entry=to_entry_response(entry),
            streak=StreakResponse(
                current=streak.current,
                max=streak.max,
                last_entry_date=streak.last_entry_date,
            ),
        )


# Dependency injection for service providers
def get_entry_service(db: Session = Depends(get_sync_session)) -> EntryService:
    return EntryService(db)


def get_submission_service(db: Session = Depends(get_sync_session)) -> SubmissionService:
    return SubmissionService(db)


def get_streak_service(db: Session = Depends(get_sync_session)) -> StreakService:
    return StreakService(db)
