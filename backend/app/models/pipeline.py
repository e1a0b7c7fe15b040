"""Pipeline models for the nextmic API.

Models for opportunity cards on the kanban board, stage columns, drag
results reported by the browser, activity log entries, toast
notifications, and bulk-action requests.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.pipeline_stages import DEFAULT_STAGE, PipelineStage


class OpportunityCard(BaseModel):
    """One speaking opportunity as tracked in a user's pipeline.

    ``score_id`` identifies the ``opportunity_scores`` record and is the unit
    of mutation; ``id`` is the underlying opportunity.
    """

    id: str
    score_id: str
    event_name: str
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[date] = None
    event_date: Optional[date] = None
    location: Optional[str] = None
    fee_estimate_min: Optional[float] = None
    fee_estimate_max: Optional[float] = None
    event_url: Optional[str] = None
    ai_score: int = Field(0, ge=0, le=100)
    ai_reason: Optional[str] = None
    pipeline_stage: PipelineStage = DEFAULT_STAGE
    calculated_at: Optional[datetime] = None

    @field_validator("deadline", "event_date", mode="before")
    @classmethod
    def date_part_only(cls, v):
        # PostgREST returns timestamps for some date-like columns
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("pipeline_stage", mode="before")
    @classmethod
    def default_missing_stage(cls, v):
        return v or DEFAULT_STAGE


class StageColumn(BaseModel):
    """A board column: a stage and the cards currently in it."""

    stage: PipelineStage
    label: str
    color: str
    bg_color: str
    cards: List[OpportunityCard] = []

    @property
    def count(self) -> int:
        return len(self.cards)


class ActivityType(str, Enum):
    EMAIL_SENT = "email_sent"
    EMAIL_RECEIVED = "email_received"
    CALL = "call"
    MEETING = "meeting"
    NOTE = "note"
    FOLLOW_UP = "follow_up"
    SOCIAL_INTERACTION = "social_interaction"


class ActivityLogEntry(BaseModel):
    """Outreach activity row, written after a stage change or from the detail view."""

    match_id: str = Field(..., description="Score record the activity belongs to")
    speaker_id: str = Field(..., description="User who performed the activity")
    activity_type: ActivityType = ActivityType.NOTE
    subject: Optional[str] = None
    body: Optional[str] = None
    notes: Optional[str] = None
    email_sent_at: Optional[datetime] = None


class ActivityLogCreate(BaseModel):
    activity_type: ActivityType = ActivityType.NOTE
    subject: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = Field(None, max_length=20000)
    notes: Optional[str] = Field(None, max_length=5000)

    @field_validator("subject", "body", "notes")
    @classmethod
    def blank_to_none(cls, v):
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def require_content(self):
        if not (self.subject or self.body or self.notes):
            raise ValueError("An activity needs a subject, body or notes")
        return self


class OutreachActivity(BaseModel):
    """A logged outreach activity as listed on the card's timeline."""

    id: str
    match_id: str
    speaker_id: str
    activity_type: str
    subject: Optional[str] = None
    body: Optional[str] = None
    notes: Optional[str] = None
    email_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NextFollowUp(BaseModel):
    """The soonest incomplete reminder of a pitched card."""

    id: str
    reminder_type: str
    due_date: date
    days_until_due: int

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0


class CardActivity(BaseModel):
    """Activity timeline for one card, newest first."""

    score_id: str
    activities: List[OutreachActivity]
    next_follow_up: Optional[NextFollowUp] = None


class DragLocation(BaseModel):
    droppable_id: str
    index: int = Field(..., ge=0)


class DragResult(BaseModel):
    """Result event of a finished drag gesture on the board."""

    draggable_id: str = Field(..., description="score_id of the dragged card")
    source: DragLocation
    destination: Optional[DragLocation] = None


class TransitionOutcome(str, Enum):
    NOOP = "noop"
    MOVED = "moved"
    ROLLED_BACK = "rolled_back"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notification(BaseModel):
    """A user-facing toast."""

    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FollowUpIntervals(BaseModel):
    """Days after pitching at which the three follow-up reminders fall due."""

    interval1: int = Field(7, gt=0)
    interval2: int = Field(14, gt=0)
    interval3: int = Field(21, gt=0)

    def as_list(self) -> List[int]:
        return [self.interval1, self.interval2, self.interval3]


class PipelineBoard(BaseModel):
    """Board payload returned to the browser."""

    columns: List[StageColumn]
    stats: Dict[str, int]
    total: int
    notifications: List[Notification] = []


class DragEndResponse(BaseModel):
    outcome: TransitionOutcome
    board: PipelineBoard


class NotificationList(BaseModel):
    notifications: List[Notification]


class ActivityLogResult(BaseModel):
    logged: bool
    timeline: CardActivity
    notifications: List[Notification] = []


# ---------------------------------------------------------------------------
# Bulk actions and tags
# ---------------------------------------------------------------------------


class PipelineTag(BaseModel):
    id: str
    user_id: str
    name: str
    color: str
    created_at: Optional[datetime] = None


class PipelineTagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field("#6366f1", pattern=r"^#[0-9a-fA-F]{6}$")

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("Tag name cannot be empty or whitespace")
        return v.strip()


class BulkSelection(BaseModel):
    score_ids: List[str] = Field(default_factory=list, max_length=500)


class BulkMoveRequest(BulkSelection):
    stage: PipelineStage


class BulkTagRequest(BulkSelection):
    tag_id: str


class BulkActionResponse(BaseModel):
    affected: int
    board: PipelineBoard
