"""Main FastAPI application."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from leadflow.config import Settings, settings
from leadflow.container import ServiceContainer, build_services, start_background_jobs, stop_background_jobs
from leadflow.database import create_engine_for_url, create_session_factory, init_models
from leadflow.scheduler import create_scheduler, start_scheduler, stop_scheduler
from leadflow.routers import (
    agent_routes,
    health_routes,
    lead_routes,
    sync_routes,
    webhook_routes,
    workflow_routes,
)

logger = logging.getLogger(__name__)


def create_app(
    container: Optional[ServiceContainer] = None,
    app_settings: Settings = settings
) -> FastAPI:
    """
    Build the application.

    With a ready-made container (tests) nothing is connected at startup;
    otherwise the lifespan opens the database, builds the services and
    starts the timers the settings enable.
    """
    logging.basicConfig(level=getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        if getattr(app.state, "container", None) is None:
            engine = create_engine_for_url(app_settings.DATABASE_URL)
            await init_models(engine)
            app.state.container = build_services(
                app_settings,
                create_session_factory(engine),
                scheduler=create_scheduler(),
            )

        active = app.state.container
        logger.info("Starting Leadflow API...")
        if active.scheduler is not None:
            start_background_jobs(active)
            start_scheduler(active.scheduler)
        logger.info("Application started successfully!")

        yield

        logger.info("Shutting down...")
        if active.scheduler is not None:
            stop_background_jobs(active)
            stop_scheduler(active.scheduler)
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Leadflow API",
        description="Lead intake, follow-up workflows and meeting reminders",
        version="1.0.0",
        redirect_slashes=False,
        lifespan=lifespan
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================
    # ROUTER REGISTRATION
    # ============================================

    app.include_router(health_routes.router)
    app.include_router(webhook_routes.router)
    app.include_router(lead_routes.router)
    app.include_router(agent_routes.router)
    app.include_router(workflow_routes.router)
    app.include_router(sync_routes.router)

    @app.get("/")
    async def root():
        return {
            "message": "Leadflow API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health"
        }

    return app


app = create_app()
