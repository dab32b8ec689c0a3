from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .api import router as reminders_router
from .container import ReminderContainer, get_container

logger = logging.getLogger(__name__)


def create_app(container: Optional[ReminderContainer] = None) -> FastAPI:
    container = container or get_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container.embedded_agent:
            container.agent.start()
        logger.info(f"🚀 [Service] Reminder API up (embedded agent: {container.embedded_agent})")
        yield
        container.shutdown()

    app = FastAPI(title="Reminder Service", lifespan=lifespan)
    app.state.container = container
    app.include_router(reminders_router, prefix="/api/v1/reminders", tags=["reminders"])
    if container.settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


def main() -> None:
    import uvicorn

    from .config import settings

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(), host=settings.SERVICE_HOST, port=settings.SERVICE_PORT)


if __name__ == "__main__":
    main()
