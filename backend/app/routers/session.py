"""Session lifecycle router (sign-out)."""

import logging

from fastapi import APIRouter, Depends

from app.board_registry import PipelineBoardRegistry
from app.deps import forget_cached_profile, get_board_registry, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["session"])


@router.post("/auth/signout")
async def sign_out(
    current_user: dict = Depends(get_current_user),
    registry: PipelineBoardRegistry = Depends(get_board_registry),
):
    """Invalidate the user's board session and drop its in-memory state."""
    user_id = current_user["id"]
    released = registry.release(user_id)
    forget_cached_profile(user_id)
    logger.info("User %s signed out (board released: %s)", user_id, released)
    return {"status": "signed_out", "board_released": released}
