"""Shared dependencies for all nextmic API routers.

Centralises the Supabase client singleton, the score store, functions
gateway and board registry built on top of it, the authentication
dependency, the rate-limiter reference, and small utility helpers so
that every router module can ``from app.deps import …`` without pulling
in ``main``.
"""

import asyncio
import logging
import os
import time
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client, create_client

from app.board_registry import PipelineBoardRegistry
from app.bulk_actions import PipelineBulkActions
from app.follow_up_service import FollowUpService
from app.functions_gateway import FunctionsGateway
from app.pipeline_engine import PipelineStageEngine
from app.score_store import SupabaseScoreStore
from app.security import get_rate_limiter, log_security_event

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Supabase client (singleton)
# ---------------------------------------------------------------------------
_supabase_url = os.getenv("SUPABASE_URL")
_supabase_service_key = os.getenv("SUPABASE_SERVICE_KEY")

# Guard missing env vars gracefully for preview deployments
supabase: Optional[Client] = None
if _supabase_url and _supabase_service_key:
    supabase = create_client(_supabase_url, _supabase_service_key)
else:
    logger.warning("SUPABASE_URL / SUPABASE_SERVICE_KEY not set; pipeline routes disabled")

# ---------------------------------------------------------------------------
# Store, functions gateway, follow-ups, boards
# ---------------------------------------------------------------------------
functions_gateway = FunctionsGateway(supabase)
score_store: Optional[SupabaseScoreStore] = None
follow_up_service: Optional[FollowUpService] = None
board_registry: Optional[PipelineBoardRegistry] = None

if supabase is not None:
    score_store = SupabaseScoreStore(supabase, functions_gateway)
    follow_up_service = FollowUpService(score_store)
    follow_up_service.register(functions_gateway)
    board_registry = PipelineBoardRegistry(score_store)

# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
limiter = get_rate_limiter()

# ---------------------------------------------------------------------------
# HTTPBearer security scheme
# ---------------------------------------------------------------------------
security = HTTPBearer()


# ---------------------------------------------------------------------------
# Small utility helpers
# ---------------------------------------------------------------------------


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details."""
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."


def _backend_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Pipeline backend is not configured",
    )


# ---------------------------------------------------------------------------
# User profile cache (avoids a DB round-trip on every authenticated request)
# ---------------------------------------------------------------------------
_user_profile_cache: dict[str, tuple[dict, float]] = {}
_CACHE_TTL = 300  # 5 minutes


def _get_cached_profile(user_id: str) -> dict | None:
    """Return cached user profile if still within TTL, else None."""
    entry = _user_profile_cache.get(user_id)
    if entry:
        if time.time() - entry[1] < _CACHE_TTL:
            return entry[0]
        del _user_profile_cache[user_id]
    return None


def _set_cached_profile(user_id: str, profile: dict) -> None:
    if len(_user_profile_cache) > 1000:
        oldest_key = min(_user_profile_cache, key=lambda k: _user_profile_cache[k][1])
        del _user_profile_cache[oldest_key]
    _user_profile_cache[user_id] = (profile, time.time())


def forget_cached_profile(user_id: str) -> None:
    _user_profile_cache.pop(user_id, None)


# ---------------------------------------------------------------------------
# Authentication dependency
# ---------------------------------------------------------------------------


async def get_current_user(
    request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Resolve the signed-in speaker from a Supabase access token.

    Token signature, expiry and revocation are checked by Supabase Auth.
    Failures are logged with the client IP and answered with a generic
    401 so callers cannot enumerate users.
    """
    if supabase is None:
        raise _backend_unavailable()

    try:
        token = credentials.credentials
        if not token or len(token) < 20:
            log_security_event("auth_invalid_token_format", request)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
            )

        # Wrap synchronous supabase-py call to avoid blocking the event loop
        response = await asyncio.to_thread(supabase.auth.get_user, token)
        if not response or not response.user:
            log_security_event("auth_invalid_session", request)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
            )

        user_id = response.user.id
        cached = _get_cached_profile(user_id)
        if cached is not None:
            return cached

        profile_response = await asyncio.to_thread(
            lambda: supabase.table("profiles").select("*").eq("id", user_id).execute()
        )
        profile = (
            profile_response.data[0]
            if profile_response.data
            else {"id": user_id}
        )
        profile.setdefault("email", response.user.email)
        _set_cached_profile(user_id, profile)
        logger.debug("Authenticated user: %s", user_id)
        return profile

    except HTTPException:
        raise
    except Exception as e:
        log_security_event(
            "auth_error",
            request,
            {"error_type": type(e).__name__, "error_msg": str(e)[:100]},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        ) from e


# ---------------------------------------------------------------------------
# Pipeline dependencies
# ---------------------------------------------------------------------------


def get_board_registry() -> PipelineBoardRegistry:
    if board_registry is None:
        raise _backend_unavailable()
    return board_registry


def get_follow_up_service() -> FollowUpService:
    if follow_up_service is None:
        raise _backend_unavailable()
    return follow_up_service


async def get_board(
    current_user: dict = Depends(get_current_user),
    registry: PipelineBoardRegistry = Depends(get_board_registry),
) -> PipelineStageEngine:
    """The signed-in user's pipeline engine, mounted on first use."""
    return await registry.acquire(current_user)


async def get_bulk_actions(
    engine: PipelineStageEngine = Depends(get_board),
) -> PipelineBulkActions:
    return PipelineBulkActions(engine, engine.store)
