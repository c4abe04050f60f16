from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, field_validator

from dailyping.schemas.camel_base_model import CamelCaseBaseModel
from dailyping.utils.datetime_utils import is_valid_hhmm


def validate_reminder_times(values: List[str]) -> List[str]:
    """Normalize to sorted, de-duplicated ``HH:MM`` stamps; reject anything else."""
    normalized = set()
    for value in values:
        candidate = value.strip()
        if len(candidate) == 4 and candidate[1] == ":":
            candidate = f"0{candidate}"
        if not is_valid_hhmm(candidate):
            raise ValueError(f"Invalid reminder time '{value}', expected HH:MM")
        normalized.add(candidate)
    return sorted(normalized)


class SubItemRequest(CamelCaseBaseModel):
    """A sub-item as sent by the client; position is its index in the list"""

    text: str = Field(..., min_length=1, max_length=500, description="Sub-item text")
    completed: bool = Field(default=False, description="Whether the sub-item is done")
    reminders: List[str] = Field(
        default_factory=list, description="Local HH:MM reminder times"
    )

    @field_validator("reminders")
    @classmethod
    def check_reminders(cls, v: List[str]) -> List[str]:
        return validate_reminder_times(v)


class CreateEntryRequest(CamelCaseBaseModel):
    """Request schema for submitting today's entry"""

    content: str = Field(..., min_length=1, description="The goal for the day")
    day: Optional[date] = Field(
        None, description="Local calendar day; defaults to the user's today"
    )
    mode: Optional[str] = Field(
        None, max_length=32, description="Entry mode; defaults to the user's daily mode"
    )
    note: str = Field(default="", description="Free-form note")
    reminders: List[str] = Field(
        default_factory=list, description="Local HH:MM reminder times"
    )
    sub_items: List[SubItemRequest] = Field(default_factory=list)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Content must not be blank")
        return v

    @field_validator("reminders")
    @classmethod
    def check_reminders(cls, v: List[str]) -> List[str]:
        return validate_reminder_times(v)


class UpdateEntryRequest(CamelCaseBaseModel):
    """Partial update of an entry; omitted fields are left as they are"""

    content: Optional[str] = Field(None, min_length=1)
    note: Optional[str] = None
    completed: Optional[bool] = None
    reminders: Optional[List[str]] = None

    @field_validator("reminders")
    @classmethod
    def check_reminders(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return validate_reminder_times(v) if v is not None else v


class ReplaceSubItemsRequest(CamelCaseBaseModel):
    sub_items: List[SubItemRequest] = Field(default_factory=list)


class SubItemResponse(CamelCaseBaseModel):
    position: int
    text: str
    completed: bool
    reminders: List[str]


class EntryResponse(CamelCaseBaseModel):
    id: str
    user_id: str
    day: str
    content: str
    mode: str
    note: str
    completed: bool
    edited: bool
    reminders: List[str]
    sub_items: List[SubItemResponse]
    created_at: Optional[datetime] = None


class StreakResponse(CamelCaseBaseModel):
    current: int
    max: int
    last_entry_date: Optional[date] = None


class SubmissionResponse(CamelCaseBaseModel):
    entry: EntryResponse
    streak: StreakResponse
