"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docrelay.config import Settings
from docrelay.service import DocRelayService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: begin mailbox monitoring. Shutdown: stop it and drop subscribers."""
    service: DocRelayService = app.state.service
    await service.start()
    yield
    await service.stop()
    logger.info("shutdown_complete")


def create_app(
    settings: Settings | None = None,
    service: DocRelayService | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]
    if service is None:
        service = DocRelayService(settings)

    app = FastAPI(
        title="docrelay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    from docrelay.routers.documents import router as documents_router
    from docrelay.routers.events import router as events_router

    app.include_router(documents_router)
    app.include_router(events_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", **service.health()}

    @app.get("/ready")
    async def ready():
        is_ready = service.is_ready
        return JSONResponse(
            status_code=200 if is_ready else 503,
            content={"ready": is_ready},
        )

    return app
