"""Entry point for the call media to conversational agent bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from api.routes import router as api_router
from bridge.runtime import get_runtime
from bridge.server import start_call_media_server
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = get_runtime()
    runtime.supervisor.start()
    server = await start_call_media_server(runtime)
    try:
        yield
    finally:
        server.close()
        await server.wait_closed()
        await runtime.supervisor.stop()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Call Media Agent Bridge",
    description="Relays telephony media streams to a hosted conversational AI agent.",
    lifespan=lifespan,
)
app.include_router(api_router)

LOGGER = logging.getLogger("bridge.http")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    LOGGER.info("%s %s", request.method, request.url.path)
    return await call_next(request)
