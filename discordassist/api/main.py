"""
discordassist.api.main — FastAPI application entry point
==========================================================

Run with::

    uvicorn discordassist.api.main:app --reload --port 5000

The API process owns a :class:`~discordassist.bot.manager.BotManager`:
startup resets stale ``is_active`` flags, shutdown stops every live bot.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from discordassist import __version__  # noqa: E402
from discordassist.api.auth import router as auth_router  # noqa: E402
from discordassist.api.deps import get_bot_manager, get_config  # noqa: E402
from discordassist.api.routes.bot_configs import router as bot_configs_router  # noqa: E402
from discordassist.api.routes.dashboard import router as dashboard_router  # noqa: E402
from discordassist.api.routes.lifecycle import router as lifecycle_router  # noqa: E402
from discordassist.config import validate_config  # noqa: E402
from discordassist.errors import DiscordAssistError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def _resolve(app: FastAPI, dependency):
    """Call *dependency*, honouring ``app.dependency_overrides``."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown: validate config and reconcile bot state."""
    cfg = _resolve(app, get_config)
    problems = validate_config(cfg)
    for problem in problems:
        logger.warning("Configuration problem: %s", problem)
    if problems and cfg.is_production:
        raise RuntimeError("Refusing to start in production: " + "; ".join(problems))

    manager = _resolve(app, get_bot_manager)
    await manager.reconcile()
    logger.info("DiscordAssist API started (env=%s, storage=%s)", cfg.app_env, cfg.storage_backend)
    yield
    logger.info("DiscordAssist API shutting down")
    await manager.stop_all()


app = FastAPI(
    title="DiscordAssist Dashboard API",
    version=__version__,
    lifespan=lifespan,
)

# CORS: the dashboard front end sends the session cookie cross-origin in dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error bodies
# ---------------------------------------------------------------------------
@app.exception_handler(DiscordAssistError)
async def discordassist_error_handler(request: Request, exc: DiscordAssistError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        {"error": "validation_failed", "message": "Invalid request", "details": details},
        status_code=422,
    )


# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(dashboard_router, prefix="/api")
app.include_router(bot_configs_router, prefix="/api")
app.include_router(lifecycle_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
