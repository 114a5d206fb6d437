import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.routes import account_router, notifications_router, system_router
from .config import Settings, get_settings
from .container import Container, build_container
from .dispatch import FcmPushSender
from .firebase import build_firebase_clients
from .poller import start_poll_scheduler
from .triggers import AdminNotificationWatcher

logger = logging.getLogger("app")


def _build_default_container(settings: Settings) -> Container:
    clients = build_firebase_clients(settings)
    return build_container(
        settings,
        db=clients.db,
        sender=FcmPushSender(clients.app),
        verify_id_token=clients.verify_id_token,
    )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if getattr(app.state, "container", None) is None:
        app.state.container = _build_default_container(settings)
    container: Container = app.state.container

    scheduler = None
    watcher = None
    if settings.enable_schedule_poller:
        scheduler = start_poll_scheduler(
            container.poller, interval_minutes=settings.schedule_poll_interval_minutes
        )
    if settings.enable_admin_notification_watch:
        watcher = AdminNotificationWatcher(container.db, container.trigger)
        watcher.start()
    try:
        yield
    finally:
        if watcher is not None:
            watcher.stop()
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        logger.info("Background notification workers stopped")


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[Container] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="Scorekeeper Notification Service", version="1.0.0", lifespan=_lifespan)
    app.state.settings = settings
    app.state.container = container
    app.include_router(system_router)
    app.include_router(notifications_router)
    app.include_router(account_router)
    return app


app = create_app()
