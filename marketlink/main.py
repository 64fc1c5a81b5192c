# marketlink/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from marketlink.core.config import Settings, get_settings
from marketlink.core.logging_config import configure_logging
from marketlink.database import create_engine_from_settings, create_session_factory
from marketlink.routes import health, marketplaces
from marketlink.scheduler import start_scheduler, stop_scheduler
from marketlink.services.cache import create_cache
from marketlink.services.marketplaces import ConnectionLifecycleManager, build_lifecycle_manager

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    lifecycle_manager: Optional[ConnectionLifecycleManager] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    A prebuilt lifecycle manager can be passed in (tests); otherwise the
    database, cache and HTTP client are composed from settings on startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if lifecycle_manager is not None:
            app.state.lifecycle_manager = lifecycle_manager
            yield
            return

        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)
        cache = create_cache(settings.REDIS_URL)
        http_client = httpx.AsyncClient(timeout=settings.TOKEN_EXCHANGE_TIMEOUT)

        manager = build_lifecycle_manager(settings, session_factory, cache, http_client)
        app.state.session_factory = session_factory
        app.state.lifecycle_manager = manager

        await start_scheduler(settings, manager)
        logger.info(f"marketlink started ({settings.ENVIRONMENT})")
        try:
            yield  # This is where the app runs
        finally:
            await stop_scheduler()
            await http_client.aclose()
            await cache.close()
            await engine.dispose()
            logger.info("marketlink stopped")

    app = FastAPI(title="Marketplace Connections", lifespan=lifespan)
    if lifecycle_manager is not None:
        app.state.lifecycle_manager = lifecycle_manager

    app.include_router(health.router)
    app.include_router(marketplaces.router)
    return app


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    return create_app(settings)
