"""
hakgyo.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn hakgyo.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from hakgyo import __version__  # noqa: E402
from hakgyo.api.deps import get_config, get_engine  # noqa: E402
from hakgyo.api.routes.admin import router as admin_router  # noqa: E402
from hakgyo.api.routes.gamification import router as gamification_router  # noqa: E402
from hakgyo.database.engine import init_db  # noqa: E402
from hakgyo.engine.guard import DatabaseLeaseLock, InMemoryUserLock  # noqa: E402
from hakgyo.services.log_buffer import install_handler  # noqa: E402
from hakgyo.services.reward_service import GamificationService  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """CORS_ALLOW_ORIGINS (comma-separated), else FRONTEND_URL, else none."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def build_service() -> GamificationService:
    """Create the coordinator and the guard it owns."""
    engine = get_engine()
    if os.getenv("HAKGYO_AUTO_CREATE_TABLES", "").lower() in {"1", "true", "yes"}:
        init_db(engine)
    rewards = get_config().rewards
    if rewards.lock_backend == "database":
        guard = DatabaseLeaseLock(engine, rewards.lock_timeout_seconds)
    else:
        guard = InMemoryUserLock(rewards.lock_timeout_seconds)
    return GamificationService(engine, config=rewards, guard=guard)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: log capture, coordinator + guard lifecycle."""
    # Uvicorn reconfigures logging at startup, so attach here, not at import.
    install_handler()

    service = build_service()
    app.state.service = service
    logger.info(
        "Hakgyo API started — guard=%s timeout=%.0fs tz=%s config=%s",
        type(service.guard).__name__, service.guard.timeout_seconds,
        service.config.timezone, service.config.config_version,
    )
    yield
    if isinstance(service.guard, InMemoryUserLock):
        service.guard.drain()
    app.state.service = None
    logger.info("Hakgyo API shutting down")


app = FastAPI(
    title="Hakgyo Gamification API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gamification_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
