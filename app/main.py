from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from datastore.sensor_store import build_default_store
from logging_config import configure_logging
from messaging.event_log import build_default_event_log
from services.publisher import build_default_publisher
from services.readiness import ensure_ready
from services.registry import build_default_registry
from settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    registry = build_default_registry()
    try:
        ready = ensure_ready(
            registry.store,
            max_attempts=settings.ready_max_attempts,
            backoff_seconds=settings.ready_backoff_seconds,
            fail_fast=settings.ready_fail_fast,
        )
        if ready and settings.seed_defaults:
            registry.store.seed_defaults()
        yield
    finally:
        registry.shutdown()
        build_default_registry.cache_clear()
        build_default_publisher.cache_clear()
        build_default_event_log.cache_clear()
        build_default_store.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sensor Config Registry",
        description="Sensor definition registry that publishes ordered configuration change events.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
