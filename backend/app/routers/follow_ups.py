"""Follow-up reminders router."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.deps import _safe_error, get_current_user, get_follow_up_service
from app.follow_up_service import FollowUpService
from app.models.follow_up import FollowUpReminderList
from app.score_store import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["follow-ups"])


@router.get("/me/follow-ups", response_model=FollowUpReminderList)
async def list_follow_ups(
    current_user: dict = Depends(get_current_user),
    service: FollowUpService = Depends(get_follow_up_service),
):
    """Incomplete follow-up reminders, soonest first, with the overdue count."""
    try:
        return await service.list_pending(current_user["id"])
    except StoreError as e:
        raise HTTPException(
            status_code=500, detail=_safe_error("loading follow-up reminders", e)
        ) from e
