"""Health-check router."""

import logging
import os
from datetime import datetime, timezone

from fastapi import APIRouter

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "nextmic API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Report which backend capabilities are configured."""
    from app import deps

    capabilities = []
    degraded = []

    if deps.supabase is not None:
        capabilities.extend(["pipeline", "follow_up_reminders"])
    else:
        degraded.extend(["pipeline", "follow_up_reminders"])

    active_boards = len(deps.board_registry) if deps.board_registry is not None else 0

    return {
        "status": "degraded" if degraded else "healthy",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "capabilities": capabilities,
        "degraded": degraded,
        "active_boards": active_boards,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
