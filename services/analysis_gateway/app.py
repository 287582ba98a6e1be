"""Analysis gateway entrypoint."""

import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from services.analysis_gateway import dependencies
from services.analysis_gateway.presentation.http.routes import router


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = dependencies.get_app_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info(f"[GATEWAY] {settings.SERVICE_NAME} {settings.SERVICE_VERSION} starting")

    queue = dependencies.get_analysis_queue()
    emitter = dependencies.get_alert_emitter()
    channel = dependencies.get_outcome_channel()
    emitter.start(channel)
    await queue.start()
    try:
        yield
    finally:
        await queue.stop()
        await emitter.stop(channel)
        logger.info(f"[GATEWAY] {settings.SERVICE_NAME} stopped")


app = FastAPI(title="Analysis Gateway", lifespan=lifespan)
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=dependencies.get_app_settings().PORT)
