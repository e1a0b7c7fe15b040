"""Pipeline kanban board router.

Serves the signed-in speaker's opportunity board: columns grouped by
pipeline stage, drag-and-drop stage transitions, the card detail view with its
activity timeline, queued toasts, tags, and bulk actions over a
selection of cards.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.bulk_actions import PipelineBulkActions, export_filename
from app.deps import _safe_error, get_board, get_bulk_actions
from app.models.pipeline import (
    ActivityLogCreate,
    ActivityLogResult,
    BulkActionResponse,
    BulkMoveRequest,
    BulkSelection,
    BulkTagRequest,
    CardActivity,
    DragEndResponse,
    DragResult,
    NotificationList,
    OpportunityCard,
    PipelineBoard,
    PipelineTag,
    PipelineTagCreate,
)
from app.pipeline_engine import PipelineStageEngine
from app.score_store import StoreError
from app.security import rate_limit_sensitive

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["pipeline"])


# ============================================================================
# Board
# ============================================================================


@router.get("/me/pipeline", response_model=PipelineBoard)
async def get_pipeline(engine: PipelineStageEngine = Depends(get_board)):
    """
    Get the user's pipeline board.

    The board is loaded from the store the first time it is opened in a
    session; afterwards this returns the in-memory state. Pending toasts
    are drained into the response.
    """
    return engine.board()


@router.post("/me/pipeline/refresh", response_model=PipelineBoard)
async def refresh_pipeline(engine: PipelineStageEngine = Depends(get_board)):
    """Reload every card from the store."""
    await engine.load()
    return engine.board()


@router.post("/me/pipeline/drag-end", response_model=DragEndResponse)
async def drag_end(
    result: DragResult,
    engine: PipelineStageEngine = Depends(get_board),
):
    """
    Apply a finished drag gesture.

    Dropping outside a column or back onto the same slot is a no-op.
    Otherwise the card moves immediately, the stage is persisted, and a
    failed write reloads the board from the store. Activity logging and
    follow-up reminders complete in the background; their toasts arrive
    with the next board or notifications response.
    """
    try:
        outcome = await engine.handle_drag_end(result)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return DragEndResponse(outcome=outcome, board=engine.board())


@router.post("/me/pipeline/cards/{score_id}/view", response_model=OpportunityCard)
async def view_card(score_id: str, engine: PipelineStageEngine = Depends(get_board)):
    """Open a card's detail view and record that it was viewed."""
    card = await engine.view_card(score_id)
    if card is None:
        raise HTTPException(status_code=404, detail="Opportunity not found in pipeline")
    return card


@router.get("/me/pipeline/cards/{score_id}/activities", response_model=CardActivity)
async def get_card_activity(score_id: str, engine: PipelineStageEngine = Depends(get_board)):
    """
    Get the outreach timeline of a card, newest first.

    Pitched cards also report their next incomplete follow-up reminder.
    """
    try:
        timeline = await engine.card_activity(score_id)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=_safe_error("listing activities", e)) from e
    if timeline is None:
        raise HTTPException(status_code=404, detail="Opportunity not found in pipeline")
    return timeline


@router.post(
    "/me/pipeline/cards/{score_id}/activities",
    response_model=ActivityLogResult,
    status_code=201,
)
async def log_card_activity(
    score_id: str,
    activity: ActivityLogCreate,
    engine: PipelineStageEngine = Depends(get_board),
):
    """Log an email, call, meeting or note against a card."""
    logged = await engine.log_activity(
        score_id,
        activity_type=activity.activity_type,
        subject=activity.subject,
        body=activity.body,
        notes=activity.notes,
    )
    if logged is None:
        raise HTTPException(status_code=404, detail="Opportunity not found in pipeline")
    try:
        timeline = await engine.card_activity(score_id)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=_safe_error("listing activities", e)) from e
    return ActivityLogResult(
        logged=logged, timeline=timeline, notifications=engine.notifier.drain()
    )


@router.get("/me/pipeline/notifications", response_model=NotificationList)
async def get_notifications(engine: PipelineStageEngine = Depends(get_board)):
    return NotificationList(notifications=engine.notifier.drain())


# ============================================================================
# Tags
# ============================================================================


@router.get("/me/pipeline/tags", response_model=List[PipelineTag])
async def list_tags(actions: PipelineBulkActions = Depends(get_bulk_actions)):
    try:
        return await actions.list_tags()
    except StoreError as e:
        raise HTTPException(status_code=500, detail=_safe_error("listing tags", e)) from e


@router.post("/me/pipeline/tags", response_model=PipelineTag, status_code=201)
async def create_tag(
    tag: PipelineTagCreate,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    try:
        return await actions.create_tag(tag.name, tag.color)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=_safe_error("creating tag", e)) from e


# ============================================================================
# Bulk actions
# ============================================================================


@router.post("/me/pipeline/bulk/move", response_model=BulkActionResponse)
async def bulk_move(
    request_body: BulkMoveRequest,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    affected = await actions.move_to_stage(request_body.score_ids, request_body.stage)
    return BulkActionResponse(affected=affected, board=actions.engine.board())


@router.post("/me/pipeline/bulk/archive", response_model=BulkActionResponse)
async def bulk_archive(
    request_body: BulkSelection,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    affected = await actions.archive(request_body.score_ids)
    return BulkActionResponse(affected=affected, board=actions.engine.board())


@router.post("/me/pipeline/bulk/tags/add", response_model=BulkActionResponse)
async def bulk_add_tag(
    request_body: BulkTagRequest,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    affected = await actions.add_tag(request_body.score_ids, request_body.tag_id)
    return BulkActionResponse(affected=affected, board=actions.engine.board())


@router.post("/me/pipeline/bulk/tags/remove", response_model=BulkActionResponse)
async def bulk_remove_tag(
    request_body: BulkTagRequest,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    affected = await actions.remove_tag(request_body.score_ids, request_body.tag_id)
    return BulkActionResponse(affected=affected, board=actions.engine.board())


@router.post("/me/pipeline/bulk/export")
async def bulk_export(
    request_body: BulkSelection,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    """Download the selected cards as CSV."""
    content = actions.export_csv(request_body.score_ids)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/me/pipeline/bulk/pitches", response_model=BulkActionResponse)
@rate_limit_sensitive()
async def bulk_generate_pitches(
    request: Request,
    request_body: BulkSelection,
    actions: PipelineBulkActions = Depends(get_bulk_actions),
):
    """Generate a pitch for each selected card, one at a time."""
    generated = await actions.generate_pitches(request_body.score_ids)
    return BulkActionResponse(affected=generated, board=actions.engine.board())
