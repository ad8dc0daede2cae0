from __future__ import annotations

import asyncio
import logging

import httpx
import uvicorn

from progresswall.api import create_api_app
from progresswall.config import get_settings
from progresswall.db.session import dispose_engine, get_session_factory, init_engine
from progresswall.logging_config import configure_logging
from progresswall.services.scheduler_service import build_scheduler

logger = logging.getLogger(__name__)


async def run() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    init_engine(settings.DATABASE_URL)
    session_factory = get_session_factory()

    client = httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
    scheduler = build_scheduler(settings, session_factory, client)
    scheduler.start()
    logger.info("Deadline scheduler started", extra={"interval_minutes": settings.DEADLINE_SCAN_MINUTES})

    api_app = create_api_app(session_factory)
    uvicorn_config = uvicorn.Config(
        app=api_app,
        host=settings.HEALTH_HOST,
        port=settings.HEALTH_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    api_server = uvicorn.Server(uvicorn_config)

    try:
        await api_server.serve()
    finally:
        scheduler.shutdown(wait=False)
        await client.aclose()
        await dispose_engine()


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down Progress Wall")
