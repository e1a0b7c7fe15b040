"""Bulk actions over a selection of pipeline cards.

Each action works on the score ids selected on the board, reports one
toast through the board's notification center, and reloads the board
after a successful write.  Unlike drag-and-drop there is no optimistic
update: the board only changes on reload.
"""

import asyncio
import csv
import io
import logging
import os
from datetime import datetime, timezone
from typing import Callable, Iterable, List

from app.follow_up_service import CREATE_FOLLOW_UP_REMINDERS
from app.models.pipeline import OpportunityCard, PipelineTag
from app.pipeline_engine import PipelineStageEngine
from app.pipeline_stages import PipelineStage, build_stage_update, parse_stage
from app.score_store import StoreError

logger = logging.getLogger(__name__)

PITCH_GENERATION_DELAY_SECONDS = float(os.getenv("PITCH_GENERATION_DELAY_SECONDS", "1"))

EXPORT_HEADERS = ["Event Name", "Organization", "Date", "Location", "Fee Range", "Status", "Score"]


def _dedupe(score_ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(score_ids))


def _money(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _format_fee_range(card: OpportunityCard) -> str:
    if card.fee_estimate_min and card.fee_estimate_max:
        return f"${_money(card.fee_estimate_min)}-${_money(card.fee_estimate_max)}"
    return ""


def export_filename(today=None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"nextmic-pipeline-export-{today.isoformat()}.csv"


def cards_to_csv(cards: List[OpportunityCard]) -> str:
    """Render cards as CSV with every cell quoted."""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for card in cards:
        writer.writerow(
            [
                card.event_name,
                card.organizer_name or "",
                card.event_date.isoformat() if card.event_date else "",
                card.location or "",
                _format_fee_range(card),
                card.pipeline_stage.value,
                str(card.ai_score),
            ]
        )
    return output.getvalue().rstrip("\n")


class PipelineBulkActions:
    """Bulk operations bound to one user's pipeline engine."""

    def __init__(
        self,
        engine: PipelineStageEngine,
        store,
        pitch_delay: float = PITCH_GENERATION_DELAY_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.store = store
        self.pitch_delay = pitch_delay
        self._clock = clock

    @property
    def user_id(self) -> str:
        return self.engine.session.user_id

    @property
    def notifier(self):
        return self.engine.notifier

    def selected_cards(self, score_ids: Iterable[str]) -> List[OpportunityCard]:
        wanted = set(score_ids)
        return [c for c in self.engine.cards if c.score_id in wanted]

    def _on_board(self, score_ids: Iterable[str]) -> List[str]:
        # Ids not on this user's board are dropped from the selection
        ids = _dedupe(score_ids)
        owned = [i for i in ids if self.engine.get_card(i) is not None]
        if len(owned) < len(ids):
            logger.warning(
                "Ignoring %d selected ids not on the board of user %s",
                len(ids) - len(owned),
                self.user_id,
            )
        return owned

    # ------------------------------------------------------------------
    # Stage moves and archiving
    # ------------------------------------------------------------------

    async def move_to_stage(self, score_ids: Iterable[str], stage) -> int:
        ids = self._on_board(score_ids)
        if not ids:
            return 0
        self.engine.session.require_active()
        stage = parse_stage(stage)
        now = self._clock()

        try:
            await self.store.update_scores(self.user_id, ids, build_stage_update(stage, now))
        except StoreError as e:
            logger.error("Bulk move error: %s", e)
            self.notifier.error("Failed to move opportunities")
            return 0

        if stage is PipelineStage.PITCHED:
            await self._create_reminders_for(ids, now)

        self.notifier.success(f"{len(ids)} opportunities moved")
        await self.engine.load()
        return len(ids)

    async def _create_reminders_for(self, ids: List[str], pitch_date: datetime) -> None:
        intervals = await self.store.get_follow_up_intervals(self.user_id)
        for score_id in ids:
            try:
                await self.store.invoke(
                    CREATE_FOLLOW_UP_REMINDERS,
                    {
                        "userId": self.user_id,
                        "scoreId": score_id,
                        "pitchDate": pitch_date.isoformat(),
                        "intervals": intervals.as_list(),
                    },
                )
            except Exception as e:
                logger.error("Error creating follow-up reminders for score %s: %s", score_id, e)

    async def archive(self, score_ids: Iterable[str]) -> int:
        ids = self._on_board(score_ids)
        if not ids:
            return 0
        self.engine.session.require_active()
        try:
            await self.store.update_scores(self.user_id, ids, {"is_archived": True})
        except StoreError as e:
            logger.error("Bulk archive error: %s", e)
            self.notifier.error("Failed to archive opportunities")
            return 0

        self.notifier.success(f"{len(ids)} opportunities archived")
        await self.engine.load()
        return len(ids)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def list_tags(self) -> List[PipelineTag]:
        return await self.store.list_tags(self.user_id)

    async def create_tag(self, name: str, color: str) -> PipelineTag:
        self.engine.session.require_active()
        return await self.store.create_tag(self.user_id, name, color)

    async def add_tag(self, score_ids: Iterable[str], tag_id: str) -> int:
        return await self._rewrite_tags(
            score_ids,
            lambda tags: tags if tag_id in tags else [*tags, tag_id],
            success="Tag added to {n} opportunities",
            failure="Failed to add tag",
        )

    async def remove_tag(self, score_ids: Iterable[str], tag_id: str) -> int:
        return await self._rewrite_tags(
            score_ids,
            lambda tags: [t for t in tags if t != tag_id],
            success="Tag removed from {n} opportunities",
            failure="Failed to remove tag",
        )

    async def _rewrite_tags(self, score_ids, rewrite, success: str, failure: str) -> int:
        ids = self._on_board(score_ids)
        if not ids:
            return 0
        self.engine.session.require_active()
        try:
            for score_id in ids:
                current = await self.store.get_score_tags(self.user_id, score_id)
                updated = rewrite(current)
                if updated != current:
                    await self.store.update_score(self.user_id, score_id, {"tags": updated})
        except StoreError as e:
            logger.error("Bulk tag error: %s", e)
            self.notifier.error(failure)
            return 0

        self.notifier.success(success.format(n=len(ids)))
        await self.engine.load()
        return len(ids)

    # ------------------------------------------------------------------
    # Export and pitch generation
    # ------------------------------------------------------------------

    def export_csv(self, score_ids: Iterable[str]) -> str:
        selected = self.selected_cards(score_ids)
        if not selected:
            return cards_to_csv([])
        content = cards_to_csv(selected)
        self.notifier.success(f"Exported {len(selected)} opportunities")
        return content

    async def generate_pitches(self, score_ids: Iterable[str]) -> int:
        selected = self.selected_cards(score_ids)
        if not selected:
            return 0
        self.engine.session.require_active()

        success_count = 0
        for i, card in enumerate(selected):
            try:
                response = await self.store.invoke(
                    "generate-pitch",
                    {
                        "userId": self.user_id,
                        "opportunityId": card.id,
                        "tone": "professional",
                    },
                )
                if response:
                    success_count += 1
            except Exception as e:
                logger.error("Failed to generate pitch for %s: %s", card.event_name, e)

            # Space out calls to the AI function
            if i < len(selected) - 1 and self.pitch_delay > 0:
                await asyncio.sleep(self.pitch_delay)

        self.notifier.success(f"{success_count} pitches generated")
        return success_count
