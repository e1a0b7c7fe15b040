"""Follow-up reminder generation for pitched opportunities.

When a card is pitched, three reminders (``first``, ``second``, ``final``)
are scheduled at the user's configured day offsets from the pitch date.
The generator is registered on the :class:`FunctionsGateway` under
``createFollowUpReminders`` so the pipeline engine invokes it like any
other serverless function.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from app.functions_gateway import FunctionsGateway
from app.models.follow_up import FollowUpReminder, FollowUpReminderList, ReminderType
from app.models.pipeline import FollowUpIntervals

logger = logging.getLogger(__name__)

CREATE_FOLLOW_UP_REMINDERS = "createFollowUpReminders"

_REMINDER_ORDER = (ReminderType.FIRST, ReminderType.SECOND, ReminderType.FINAL)


def _parse_pitch_date(value) -> datetime:
    if isinstance(value, datetime):
        pitch_date = value
    else:
        pitch_date = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if pitch_date.tzinfo is None:
        pitch_date = pitch_date.replace(tzinfo=timezone.utc)
    return pitch_date


def build_follow_up_reminders(
    user_id: str,
    score_id: str,
    pitch_date: datetime,
    intervals: Sequence[int],
) -> List[Dict[str, Any]]:
    """Build the three reminder rows for a pitched opportunity.

    Due dates are the UTC calendar date of ``pitch_date + interval days``.
    """
    if len(intervals) != len(_REMINDER_ORDER):
        raise ValueError(f"Expected 3 follow-up intervals, got {len(intervals)}")

    pitch_date = _parse_pitch_date(pitch_date).astimezone(timezone.utc)
    return [
        {
            "speaker_id": user_id,
            "match_id": score_id,
            "reminder_type": reminder_type.value,
            "due_date": (pitch_date + timedelta(days=int(days))).date().isoformat(),
        }
        for reminder_type, days in zip(_REMINDER_ORDER, intervals)
    ]


class FollowUpService:
    """Create and list follow-up reminders through the score store."""

    def __init__(self, store):
        self.store = store

    def register(self, gateway: FunctionsGateway) -> None:
        gateway.register(CREATE_FOLLOW_UP_REMINDERS, self.create_follow_up_reminders)

    async def create_follow_up_reminders(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Function handler: ``{userId, scoreId, pitchDate, intervals}``."""
        intervals = payload.get("intervals") or FollowUpIntervals().as_list()
        rows = build_follow_up_reminders(
            user_id=payload["userId"],
            score_id=payload["scoreId"],
            pitch_date=payload.get("pitchDate") or datetime.now(timezone.utc),
            intervals=intervals,
        )
        await self.store.insert_reminders(rows)
        logger.info(
            "Created %d follow-up reminders for score %s", len(rows), payload["scoreId"]
        )
        return {"reminders": rows}

    async def list_pending(
        self, user_id: str, today: Optional[date] = None
    ) -> FollowUpReminderList:
        today = today or datetime.now(timezone.utc).date()
        rows = await self.store.list_pending_reminders(user_id)

        reminders = []
        for row in rows:
            score = row.get("opportunity_scores") or {}
            opportunity = score.get("opportunities") or {}
            reminders.append(
                FollowUpReminder(
                    id=str(row["id"]),
                    match_id=str(row["match_id"]),
                    reminder_type=row["reminder_type"],
                    due_date=str(row["due_date"])[:10],
                    is_completed=bool(row.get("is_completed")),
                    event_name=opportunity.get("event_name") or "Unknown Event",
                    organizer_name=opportunity.get("organizer_name"),
                    opportunity_id=str(opportunity.get("id") or ""),
                )
            )

        overdue = sum(1 for r in reminders if r.due_date < today)
        return FollowUpReminderList(reminders=reminders, overdue_count=overdue)
