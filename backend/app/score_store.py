"""Opportunity score store backed by Supabase PostgREST.

The pipeline board reads and writes ``opportunity_scores`` rows (joined
to their ``opportunities``), appends ``outreach_activities``, and reads
per-user follow-up settings from ``profiles``.  Raw PostgREST rows are
turned into :class:`OpportunityCard` objects in exactly one place,
:func:`card_from_row`, so defaults are applied once at ingestion.

All supabase-py calls are synchronous; they are run with
``asyncio.to_thread`` to keep the event loop free.  Any backend failure
surfaces as :class:`StoreError`.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError
from supabase import Client

from app.functions_gateway import FunctionsGateway
from app.models.pipeline import (
    ActivityLogEntry,
    FollowUpIntervals,
    OpportunityCard,
    OutreachActivity,
    PipelineTag,
)

logger = logging.getLogger(__name__)

SCORES_TABLE = "opportunity_scores"
ACTIVITIES_TABLE = "outreach_activities"
PROFILES_TABLE = "profiles"
TAGS_TABLE = "pipeline_tags"
REMINDERS_TABLE = "follow_up_reminders"

_SCORE_SELECT = (
    "id, ai_score, ai_reason, pipeline_stage, calculated_at, "
    "opportunities (id, event_name, organizer_name, organizer_email, "
    "description, deadline, event_date, location, fee_estimate_min, "
    "fee_estimate_max, event_url)"
)

_REMINDER_SELECT = (
    "id, match_id, reminder_type, due_date, is_completed, "
    "opportunity_scores!inner (id, opportunities (id, event_name, organizer_name))"
)


class StoreError(Exception):
    """A read or write against the hosted store failed."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        detail = f": {type(cause).__name__}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
        self.operation = operation


class ScoreStore(Protocol):
    """Record-store contract required by the pipeline engine."""

    async def list_scores_for_user(self, user_id: str) -> List[OpportunityCard]: ...

    async def update_score(self, user_id: str, score_id: str, fields: Dict[str, Any]) -> None: ...

    async def append_activity(self, entry: ActivityLogEntry) -> None: ...

    async def list_activities(self, user_id: str, score_id: str) -> List[OutreachActivity]: ...

    async def next_pending_reminder(
        self, user_id: str, score_id: str
    ) -> Optional[Dict[str, Any]]: ...

    async def invoke(self, name: str, payload: Dict[str, Any]) -> Any: ...

    async def get_follow_up_intervals(self, user_id: str) -> FollowUpIntervals: ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def card_from_row(row: Dict[str, Any]) -> Optional[OpportunityCard]:
    """Map a joined score row into an :class:`OpportunityCard`.

    Returns None for rows whose opportunity is missing or malformed.
    """
    opportunity = row.get("opportunities")
    if isinstance(opportunity, list):
        opportunity = opportunity[0] if opportunity else None
    if not opportunity:
        logger.warning("Score %s has no opportunity attached; skipping", row.get("id"))
        return None

    try:
        return OpportunityCard(
            id=str(opportunity["id"]),
            score_id=str(row["id"]),
            event_name=opportunity.get("event_name") or "Untitled opportunity",
            organizer_name=opportunity.get("organizer_name"),
            organizer_email=opportunity.get("organizer_email"),
            description=opportunity.get("description"),
            deadline=opportunity.get("deadline"),
            event_date=opportunity.get("event_date"),
            location=opportunity.get("location"),
            fee_estimate_min=opportunity.get("fee_estimate_min"),
            fee_estimate_max=opportunity.get("fee_estimate_max"),
            event_url=opportunity.get("event_url"),
            ai_score=row.get("ai_score") or 0,
            ai_reason=row.get("ai_reason"),
            pipeline_stage=row.get("pipeline_stage"),
            calculated_at=row.get("calculated_at"),
        )
    except (KeyError, ValidationError) as e:
        logger.warning("Malformed score row %s skipped: %s", row.get("id"), e)
        return None


def _positive_days(value: Any, default: int) -> int:
    # Null, zero, negative and non-numeric settings all fall back
    try:
        days = int(value)
    except (TypeError, ValueError):
        return default
    return days if days > 0 else default


def intervals_from_profile(profile: Optional[Dict[str, Any]]) -> FollowUpIntervals:
    """Read follow-up intervals from a profile row, defaulting per field."""
    defaults = FollowUpIntervals()
    if not profile:
        return defaults
    return FollowUpIntervals(
        interval1=_positive_days(profile.get("follow_up_interval_1"), defaults.interval1),
        interval2=_positive_days(profile.get("follow_up_interval_2"), defaults.interval2),
        interval3=_positive_days(profile.get("follow_up_interval_3"), defaults.interval3),
    )


# ---------------------------------------------------------------------------
# Supabase implementation
# ---------------------------------------------------------------------------


class SupabaseScoreStore:
    """:class:`ScoreStore` over a supabase-py client."""

    def __init__(self, client: Client, functions: Optional[FunctionsGateway] = None):
        self.client = client
        self.functions = functions or FunctionsGateway(client)

    async def _run(self, operation: str, query: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(query)
        except Exception as e:
            logger.error("Store operation '%s' failed: %s", operation, e)
            raise StoreError(operation, e) from e

    # -- scores -------------------------------------------------------------

    async def list_scores_for_user(self, user_id: str) -> List[OpportunityCard]:
        response = await self._run(
            "listing pipeline scores",
            lambda: self.client.table(SCORES_TABLE)
            .select(_SCORE_SELECT)
            .eq("user_id", user_id)
            .eq("is_archived", False)
            .order("ai_score", desc=True)
            .execute(),
        )
        cards = [card_from_row(row) for row in response.data or []]
        return [card for card in cards if card is not None]

    # The service-role key bypasses row-level security, so every query by
    # score id is also scoped to the owning user.

    async def update_score(self, user_id: str, score_id: str, fields: Dict[str, Any]) -> None:
        await self._run(
            "updating score",
            lambda: self.client.table(SCORES_TABLE)
            .update(fields)
            .eq("id", score_id)
            .eq("user_id", user_id)
            .execute(),
        )

    async def update_scores(
        self, user_id: str, score_ids: List[str], fields: Dict[str, Any]
    ) -> None:
        await self._run(
            "updating scores",
            lambda: self.client.table(SCORES_TABLE)
            .update(fields)
            .in_("id", score_ids)
            .eq("user_id", user_id)
            .execute(),
        )

    async def get_score_tags(self, user_id: str, score_id: str) -> List[str]:
        response = await self._run(
            "reading score tags",
            lambda: self.client.table(SCORES_TABLE)
            .select("tags")
            .eq("id", score_id)
            .eq("user_id", user_id)
            .execute(),
        )
        if not response.data:
            return []
        return list(response.data[0].get("tags") or [])

    # -- activity + functions ------------------------------------------------

    async def append_activity(self, entry: ActivityLogEntry) -> None:
        await self._run(
            "appending activity",
            lambda: self.client.table(ACTIVITIES_TABLE)
            .insert(entry.model_dump(mode="json", exclude_none=True))
            .execute(),
        )

    async def list_activities(self, user_id: str, score_id: str) -> List[OutreachActivity]:
        """Activities logged against a score record, newest first."""
        response = await self._run(
            "listing activities",
            lambda: self.client.table(ACTIVITIES_TABLE)
            .select("*")
            .eq("match_id", score_id)
            .eq("speaker_id", user_id)
            .order("created_at", desc=True)
            .execute(),
        )
        return [OutreachActivity(**row) for row in response.data or []]

    async def invoke(self, name: str, payload: Dict[str, Any]) -> Any:
        return await self.functions.invoke(name, payload)

    # -- profile settings ----------------------------------------------------

    async def get_follow_up_intervals(self, user_id: str) -> FollowUpIntervals:
        try:
            response = await self._run(
                "reading follow-up intervals",
                lambda: self.client.table(PROFILES_TABLE)
                .select("follow_up_interval_1, follow_up_interval_2, follow_up_interval_3")
                .eq("id", user_id)
                .execute(),
            )
        except StoreError:
            return FollowUpIntervals()
        return intervals_from_profile(response.data[0] if response.data else None)

    # -- tags ------------------------------------------------------------------

    async def list_tags(self, user_id: str) -> List[PipelineTag]:
        response = await self._run(
            "listing tags",
            lambda: self.client.table(TAGS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("name")
            .execute(),
        )
        return [PipelineTag(**row) for row in response.data or []]

    async def create_tag(self, user_id: str, name: str, color: str) -> PipelineTag:
        response = await self._run(
            "creating tag",
            lambda: self.client.table(TAGS_TABLE)
            .insert({"user_id": user_id, "name": name, "color": color})
            .execute(),
        )
        if not response.data:
            raise StoreError("creating tag")
        return PipelineTag(**response.data[0])

    # -- follow-up reminders ---------------------------------------------------

    async def insert_reminders(self, rows: List[Dict[str, Any]]) -> None:
        await self._run(
            "inserting follow-up reminders",
            lambda: self.client.table(REMINDERS_TABLE).insert(rows).execute(),
        )

    async def next_pending_reminder(self, user_id: str, score_id: str) -> Optional[Dict[str, Any]]:
        response = await self._run(
            "reading next follow-up reminder",
            lambda: self.client.table(REMINDERS_TABLE)
            .select("id, due_date, reminder_type, is_completed")
            .eq("match_id", score_id)
            .eq("speaker_id", user_id)
            .eq("is_completed", False)
            .order("due_date")
            .limit(1)
            .execute(),
        )
        return response.data[0] if response.data else None

    async def list_pending_reminders(self, user_id: str) -> List[Dict[str, Any]]:
        response = await self._run(
            "listing follow-up reminders",
            lambda: self.client.table(REMINDERS_TABLE)
            .select(_REMINDER_SELECT)
            .eq("speaker_id", user_id)
            .eq("is_completed", False)
            .order("due_date")
            .execute(),
        )
        return response.data or []
