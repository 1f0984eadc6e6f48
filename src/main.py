"""Entry point for the call bridge service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import build_orchestrator
from api.routes import router as api_router
from config.settings import get_settings
from integrations.calling_api import CallingApiClient
from signaling.relay import SignalingRelay


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = SignalingRelay()
    api_client = CallingApiClient(settings)
    orchestrator = build_orchestrator(settings, relay=relay, api_client=api_client)
    app.state.relay = relay
    app.state.orchestrator = orchestrator
    try:
        yield
    finally:
        await orchestrator.shutdown()
        await api_client.aclose()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
for noisy in ("aioice", "aiortc", "httpx"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

app = FastAPI(
    title="Call Bridge",
    description="Bridges calling-service calls to a browser operator console.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
