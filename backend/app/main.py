"""
nextmic API - FastAPI backend for the speaker opportunity pipeline
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from app import deps  # noqa: E402
from app.routers import follow_ups, health, pipeline, session  # noqa: E402
from app.security import setup_security  # noqa: E402
from app.session import SessionInvalidatedError  # noqa: E402


# =============================================================================
# CORS Configuration
# =============================================================================

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()


def _allowed_origins() -> list[str]:
    if ENVIRONMENT == "production":
        raw = os.getenv("ALLOWED_ORIGINS", "https://app.nextmic.io").split(",")
        origins = []
        for origin in (o.strip() for o in raw):
            if not origin:
                continue
            if not origin.startswith("https://") or "localhost" in origin:
                logger.warning("Rejecting origin in production: %s", origin)
                continue
            origins.append(origin)
        return origins or ["https://app.nextmic.io"]

    raw = os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")
    return [o.strip() for o in raw if o.strip()]


ALLOWED_ORIGINS = _allowed_origins()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("nextmic API starting (environment=%s)", ENVIRONMENT)
    yield
    if deps.board_registry is not None:
        await deps.board_registry.shutdown()
    logger.info("nextmic API stopped")


app = FastAPI(
    title="nextmic API",
    description="Speaking opportunity pipeline for professional speakers",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)

# Must run after CORS middleware is added (order matters)
setup_security(app, ALLOWED_ORIGINS)


@app.exception_handler(SessionInvalidatedError)
async def session_invalidated_handler(request: Request, exc: SessionInvalidatedError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Session has ended. Please sign in again."},
    )


app.include_router(health.router)
app.include_router(pipeline.router)
app.include_router(follow_ups.router)
app.include_router(session.router)
