"""FastAPI application for the credits HTTP API."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from stickercredits import __version__
from stickercredits.api.routes import router
from stickercredits.config import Settings, get_settings
from stickercredits.logging import configure_logging, get_logger
from stickercredits.service import CreditsService
from stickercredits.subscription_manager import run_expiry_sweeper


logger = get_logger("api")


def create_app(service: Optional[CreditsService] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    """Build the app around a service instance (a fresh one by default)."""

    settings = settings or get_settings()
    configure_logging(settings)
    service = service or CreditsService(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Start the expiry sweeper when enabled."""

        sweeper_task = None
        if settings.enable_expiry_sweeper:
            sweeper_task = asyncio.create_task(
                run_expiry_sweeper(service.subscriptions, settings.expiry_sweep_interval_seconds)
            )
            logger.info("expiry sweeper started interval=%s", settings.expiry_sweep_interval_seconds)
        yield
        if sweeper_task is not None:
            sweeper_task.cancel()

    app = FastAPI(
        title="Sticker Credits API",
        version=__version__,
        description="HTTP API for sticker credits, purchases and subscriptions",
        lifespan=lifespan,
    )

    # Inject service into app state for route access
    app.state.service = service

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": app.version}

    return app


app = create_app()
