from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from mediaapp.api.v1 import get_api_router
from mediaapp.core.config import get_settings
from mediaapp.core.db import create_schema
from mediaapp.core.logging import configure_logging, get_logger, level_from_name
from mediaapp.core.runtime import Runtime, build_runtime
from mediaapp.workers.tasks import run_consumers

logger = get_logger(component="api")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    settings = runtime.settings if runtime else get_settings()
    configure_logging(level=level_from_name(settings.log_level))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = runtime or build_runtime(settings)
        if settings.database_auto_create:
            await create_schema(active.db_engine)
        app.state.settings = settings
        app.state.runtime = active

        stop = asyncio.Event()
        embedded: Optional[asyncio.Task] = None
        if settings.embedded_worker_enabled:
            embedded = asyncio.create_task(run_consumers(active, stop, concurrency=1, consumer_prefix="embedded"))
            logger.info("embedded_worker_started", queue=active.queue.name)
        try:
            yield
        finally:
            if embedded is not None:
                stop.set()
                await embedded
            await active.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
