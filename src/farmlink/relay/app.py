"""FastAPI application factory for the device relay."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from farmlink.config import Settings, get_settings
from farmlink.device.interfaces import BackendResolver
from farmlink.device.resolver import DeviceResolver
from farmlink.relay.gateway import ConnectionGateway
from farmlink.relay.registry import SessionRegistry
from farmlink.relay.routes import router
from farmlink.relay.session import DeviceSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Stop every device session on shutdown."""
    try:
        yield
    finally:
        gateway: ConnectionGateway | None = getattr(app.state, "gateway", None)
        if gateway is not None:
            await gateway.aclose()
        logger.info("relay shut down")


def create_app(settings: Settings | None = None, resolver: BackendResolver | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    resolver = resolver or DeviceResolver(settings)

    def session_factory(device_id: str, on_closed) -> DeviceSession:
        return DeviceSession(device_id, resolver, settings, on_closed=on_closed)

    app = FastAPI(title="farmlink device relay", lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = ConnectionGateway(SessionRegistry(session_factory), settings)
    app.include_router(router)
    return app
