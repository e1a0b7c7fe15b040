"""
nextmic API Models

Pydantic models for data validation and serialization.
"""

from .pipeline import (
    # Board
    OpportunityCard,
    StageColumn,
    PipelineBoard,
    # Drag and drop
    DragLocation,
    DragResult,
    DragEndResponse,
    TransitionOutcome,
    # Side effects
    ActivityLogEntry,
    ActivityLogCreate,
    ActivityLogResult,
    ActivityType,
    CardActivity,
    NextFollowUp,
    OutreachActivity,
    FollowUpIntervals,
    # Toasts
    Notification,
    NotificationLevel,
    NotificationList,
    # Bulk actions and tags
    BulkSelection,
    BulkMoveRequest,
    BulkTagRequest,
    BulkActionResponse,
    PipelineTag,
    PipelineTagCreate,
)

from .follow_up import (
    ReminderType,
    FollowUpReminder,
    FollowUpReminderList,
)
