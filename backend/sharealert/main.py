from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sharealert.config import Settings, configure_logging, get_settings
from sharealert.routers import announcements, system
from sharealert.services.alert_repository import AlertRepository
from sharealert.services.announcement_repository import AnnouncementRepository
from sharealert.services.announcements import AnnouncementService
from sharealert.services.database import get_supabase
from sharealert.services.http_client import build_http_client
from sharealert.services.market_cache import build_market_cache
from sharealert.services.market_data import QuoteFetcher
from sharealert.services.monitor import AlertMonitor
from sharealert.services.notifications import NotificationDispatcher, build_notification_sender
from sharealert.services.user_repository import UserRepository

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        http_client = build_http_client(settings, transport=transport) if transport else build_http_client(settings)
        cache = build_market_cache(settings)
        await cache.connect()

        db = get_supabase()
        if db is None:
            logger.warning("Supabase is not configured; alerts and announcements are kept in memory.")
        alert_repo = AlertRepository(db)
        user_repo = UserRepository(db)
        announcement_repo = AnnouncementRepository(db)

        fetcher = QuoteFetcher.from_settings(settings, http_client, cache)
        dispatcher = NotificationDispatcher(user_repo, build_notification_sender(settings, http_client))
        announcement_service = AnnouncementService(announcement_repo, alert_repo, dispatcher)
        monitor = AlertMonitor(settings, alert_repo, fetcher, dispatcher, announcement_service)

        app.state.settings = settings
        app.state.http_client = http_client
        app.state.cache = cache
        app.state.fetcher = fetcher
        app.state.alerts = alert_repo
        app.state.users = user_repo
        app.state.announcement_store = announcement_repo
        app.state.announcements = announcement_service
        app.state.monitor = monitor

        try:
            await monitor.start()
        except Exception:
            logger.exception("Failed to start alert monitor")

        try:
            yield
        finally:
            try:
                await monitor.stop()
            except Exception:
                logger.exception("Failed to stop alert monitor")
            try:
                await http_client.aclose()
            except Exception:
                logger.exception("Failed to close HTTP client")
            await cache.close()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.include_router(system.router)
    app.include_router(announcements.router)

    @app.get("/")
    async def root():
        return {"app": settings.app_name, "status": "running"}

    return app


app = create_app()
