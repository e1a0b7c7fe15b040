"""Follow-up reminder models for the nextmic API."""

from datetime import date
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class ReminderType(str, Enum):
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"


class FollowUpReminder(BaseModel):
    """An incomplete follow-up reminder with its opportunity resolved."""

    id: str
    match_id: str
    reminder_type: ReminderType
    due_date: date
    is_completed: bool = False
    event_name: str = "Unknown Event"
    organizer_name: str | None = None
    opportunity_id: str = ""


class FollowUpReminderList(BaseModel):
    reminders: List[FollowUpReminder]
    overdue_count: int = Field(0, ge=0)
