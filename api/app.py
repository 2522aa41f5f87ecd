"""
api/app.py — FastAPI application factory
==========================================
Creates and configures the FastAPI instance.  The app's lifespan is the
scan view's lifespan: a `SessionController` is opened on startup (camera
acquired, health polling started) and closed on shutdown (camera released).

CORS
----
All origins are allowed by default (suitable for local development and
demos).  Restrict `CORS_ORIGINS` in config for a real deployment.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.session import SessionController
from config import API_TITLE, API_VERSION, CORS_ORIGINS
from utils.logger import get_logger

logger = get_logger("api.app")


def create_app(controller_factory=SessionController) -> FastAPI:
    """
    Construct and return the configured FastAPI application.

    `controller_factory` lets tests inject a controller built from fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        controller = controller_factory()
        app.state.controller = controller
        await controller.open()
        logger.info("Scan view opened.")
        try:
            yield
        finally:
            await controller.close()
            app.state.controller = None
            logger.info("Scan view closed.")

    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        description=(
            "Face-scan vitals session API: capture a 15 s clip, extract vitals "
            "remotely and return an AI interpretation. "
            "⚠️ WELLNESS TOOL ONLY — not a medical device."
        ),
        lifespan=lifespan,
    )

    # ── CORS ────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app
