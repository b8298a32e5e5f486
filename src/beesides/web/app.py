"""
Beesides Web API - FastAPI application.

Hosts the onboarding endpoints for clients that do not embed the flow.
Uses Supabase Auth bearer tokens for authentication.
"""

import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beesides import __version__
from beesides.config import settings
from beesides.web.auth import AuthenticatedUser, get_current_user
from onboarding.api import router as onboarding_router

logger = logging.getLogger(__name__)

app = FastAPI(title="Beesides", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(onboarding_router)


@app.on_event("startup")
async def startup_event():
    """Log configuration on startup."""
    logger.info("Beesides API starting up...")
    logger.info(f"  Environment: {settings.beesides_env}")
    logger.info(f"  Onboarding steps: {', '.join(settings.onboarding_steps)}")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


@app.get("/me")
async def me(user: AuthenticatedUser = Depends(get_current_user)) -> dict:
    """Echo the authenticated user (token check for clients)."""
    return {"id": user.id, "email": user.email}
