from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from couplet.core.config import settings
from couplet.core.logging import configure_logging
from .api import router as reminders_router


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Couplet Reminder Service")
    app.include_router(reminders_router, prefix="/api/v1/reminders", tags=["reminders"])
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.SERVICE_HOST, port=settings.SERVICE_PORT)
