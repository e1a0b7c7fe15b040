"""Pipeline stage engine for the opportunity kanban board.

Holds the in-memory list of a user's opportunity cards, groups it into
stage columns, and processes drag-and-drop stage transitions:

1. The moved card is rewritten in memory before any network call
   (optimistic update).
2. The stage change is persisted on the score record, stamping the
   stage timestamp column where the stage has one.
3. If persisting fails, the whole list is reloaded from the store.
4. If it succeeds, an activity entry is appended and, for ``pitched``,
   follow-up reminders are generated.  Both run as background tasks
   whose failures are logged and never undo the stage change.

No lock is held across the persistence window; overlapping drags race
and the store keeps the last write.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from app.follow_up_service import CREATE_FOLLOW_UP_REMINDERS
from app.models.pipeline import (
    ActivityLogEntry,
    ActivityType,
    CardActivity,
    DragResult,
    NextFollowUp,
    OpportunityCard,
    PipelineBoard,
    StageColumn,
    TransitionOutcome,
)
from app.notification_center import NotificationCenter
from app.pipeline_stages import (
    BOARD_STAGES,
    STAGE_DEFINITIONS,
    PipelineStage,
    build_stage_update,
    parse_stage,
    stage_label,
)
from app.score_store import ScoreStore, StoreError
from app.session import UserSession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStageEngine:
    """Authoritative in-memory pipeline for one signed-in user."""

    def __init__(
        self,
        session: UserSession,
        store: ScoreStore,
        notifier: Optional[NotificationCenter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.store = store
        self.notifier = notifier or NotificationCenter()
        self._clock = clock
        self._cards: List[OpportunityCard] = []
        self._side_effects: Set[asyncio.Task] = set()
        self.loaded_at: Optional[datetime] = None

    @property
    def cards(self) -> List[OpportunityCard]:
        return list(self._cards)

    def get_card(self, score_id: str) -> Optional[OpportunityCard]:
        return next((c for c in self._cards if c.score_id == score_id), None)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """Replace the card list with the store's current view.

        On failure the previous list is kept and an error toast is queued.
        """
        self.session.require_active()
        try:
            cards = await self.store.list_scores_for_user(self.session.user_id)
        except StoreError as e:
            logger.error("Pipeline load failed for user %s: %s", self.session.user_id, e)
            self.notifier.error("Failed to load pipeline")
            return False

        self._cards = cards
        self.loaded_at = self._clock()
        logger.debug("Loaded %d pipeline cards for user %s", len(cards), self.session.user_id)
        return True

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def apply_optimistic_move(self, result: DragResult) -> Optional[PipelineStage]:
        """Validate a drag result and rewrite the card's stage in memory.

        Returns the target stage, or None when the drag is a no-op: dropped
        outside a column, back on its own slot, or for a card not on this
        user's board.
        """
        destination = result.destination
        if destination is None:
            return None
        if (
            destination.droppable_id == result.source.droppable_id
            and destination.index == result.source.index
        ):
            return None

        new_stage = parse_stage(destination.droppable_id)

        for i, card in enumerate(self._cards):
            if card.score_id == result.draggable_id:
                self._cards[i] = card.model_copy(update={"pipeline_stage": new_stage})
                return new_stage

        logger.warning(
            "Dragged card %s is not on the board of user %s; ignoring drop",
            result.draggable_id,
            self.session.user_id,
        )
        return None

    async def handle_drag_end(self, result: DragResult) -> TransitionOutcome:
        self.session.require_active()
        new_stage = self.apply_optimistic_move(result)
        if new_stage is None:
            return TransitionOutcome.NOOP

        score_id = result.draggable_id
        now = self._clock()
        try:
            await self.store.update_score(
                self.session.user_id, score_id, build_stage_update(new_stage, now)
            )
        except StoreError as e:
            logger.error("Stage update failed for score %s: %s", score_id, e)
            self.notifier.error("Failed to update stage")
            await self.load()
            return TransitionOutcome.ROLLED_BACK

        label = stage_label(new_stage)
        self.notifier.success(f'Moved to "{label}"')
        self._dispatch(self._log_stage_change(score_id, label))
        if new_stage is PipelineStage.PITCHED:
            self._dispatch(self._create_follow_up_reminders(score_id, now))
        return TransitionOutcome.MOVED

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    def _dispatch(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight side effect to finish."""
        while self._side_effects:
            await asyncio.gather(*list(self._side_effects))

    async def _log_stage_change(self, score_id: str, label: str) -> None:
        entry = ActivityLogEntry(
            match_id=score_id,
            speaker_id=self.session.user_id,
            activity_type=ActivityType.NOTE,
            notes=f'Moved to "{label}" stage',
        )
        try:
            await self.store.append_activity(entry)
        except Exception as e:
            logger.error("Failed to log stage change for score %s: %s", score_id, e)

    async def _create_follow_up_reminders(self, score_id: str, pitch_date: datetime) -> None:
        try:
            intervals = await self.store.get_follow_up_intervals(self.session.user_id)
            await self.store.invoke(
                CREATE_FOLLOW_UP_REMINDERS,
                {
                    "userId": self.session.user_id,
                    "scoreId": score_id,
                    "pitchDate": pitch_date.isoformat(),
                    "intervals": intervals.as_list(),
                },
            )
        except Exception as e:
            logger.error("Error creating follow-up reminders for score %s: %s", score_id, e)
            return
        self.notifier.success("Follow-up reminders created")

    # ------------------------------------------------------------------
    # Detail view
    # ------------------------------------------------------------------

    async def view_card(self, score_id: str) -> Optional[OpportunityCard]:
        """Return the card for the detail view and stamp ``viewed_at``.

        The timestamp write is silent best-effort.
        """
        self.session.require_active()
        card = self.get_card(score_id)
        if card is None:
            return None
        try:
            await self.store.update_score(
                self.session.user_id, score_id, {"viewed_at": self._clock().isoformat()}
            )
        except StoreError as e:
            logger.warning("Failed to record view for score %s: %s", score_id, e)
        return card

    async def card_activity(self, score_id: str) -> Optional[CardActivity]:
        """Activity timeline of a card on the board, newest first.

        Pitched cards also carry their next incomplete follow-up reminder.
        Returns None when the card is not on the board.

        Raises:
            StoreError: if the activities cannot be read.
        """
        self.session.require_active()
        card = self.get_card(score_id)
        if card is None:
            return None

        activities = await self.store.list_activities(self.session.user_id, score_id)
        next_follow_up = None
        if card.pipeline_stage is PipelineStage.PITCHED:
            next_follow_up = await self._next_follow_up(score_id)
        return CardActivity(
            score_id=score_id, activities=activities, next_follow_up=next_follow_up
        )

    async def _next_follow_up(self, score_id: str) -> Optional[NextFollowUp]:
        try:
            row = await self.store.next_pending_reminder(self.session.user_id, score_id)
        except StoreError as e:
            logger.warning("Failed to read next reminder for score %s: %s", score_id, e)
            return None
        if row is None:
            return None
        due = date.fromisoformat(str(row["due_date"])[:10])
        return NextFollowUp(
            id=str(row["id"]),
            reminder_type=row["reminder_type"],
            due_date=due,
            days_until_due=(due - self._clock().date()).days,
        )

    async def log_activity(
        self,
        score_id: str,
        activity_type: ActivityType = ActivityType.NOTE,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[bool]:
        """Log an outreach activity from the detail view.

        Returns None when the card is not on the board, otherwise whether the
        activity was written. Either way one toast reports the result.
        """
        self.session.require_active()
        if self.get_card(score_id) is None:
            return None

        activity_type = ActivityType(activity_type)
        entry = ActivityLogEntry(
            match_id=score_id,
            speaker_id=self.session.user_id,
            activity_type=activity_type,
            subject=subject,
            body=body,
            notes=notes,
            email_sent_at=self._clock() if activity_type is ActivityType.EMAIL_SENT else None,
        )
        try:
            await self.store.append_activity(entry)
        except StoreError as e:
            logger.error("Error logging activity for score %s: %s", score_id, e)
            self.notifier.error("Failed to log activity")
            return False

        self.notifier.success("Activity logged")
        return True

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def cards_in_stage(self, stage) -> List[OpportunityCard]:
        stage = parse_stage(stage)
        return [c for c in self._cards if c.pipeline_stage == stage]

    def columns(self) -> List[StageColumn]:
        return [
            StageColumn(
                stage=stage,
                label=STAGE_DEFINITIONS[stage]["label"],
                color=STAGE_DEFINITIONS[stage]["color"],
                bg_color=STAGE_DEFINITIONS[stage]["bg_color"],
                cards=self.cards_in_stage(stage),
            )
            for stage in BOARD_STAGES
        ]

    def stage_stats(self) -> Dict[str, int]:
        stats = {stage.value: 0 for stage in PipelineStage}
        for card in self._cards:
            stats[card.pipeline_stage.value] += 1
        return stats

    def board(self, drain_notifications: bool = True) -> PipelineBoard:
        notifications = self.notifier.drain() if drain_notifications else self.notifier.peek()
        return PipelineBoard(
            columns=self.columns(),
            stats=self.stage_stats(),
            total=len(self._cards),
            notifications=notifications,
        )
