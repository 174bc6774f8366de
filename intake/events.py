import logging

from fastapi import FastAPI

from intake.core.settings import settings
from intake.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        container = getattr(app.state, "container", None)
        if container is None:
            container = ServiceContainer.from_settings(settings)
            app.state.container = container
        await container.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        container = getattr(app.state, "container", None)
        if container is not None:
            await container.stop()
