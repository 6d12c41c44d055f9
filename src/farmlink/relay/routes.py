"""Websocket and HTTP routes for the relay."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from farmlink.relay.gateway import ConnectionGateway

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_gateway(app: Any) -> ConnectionGateway:
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="relay unavailable")
    return gateway


@router.websocket("/")
@router.websocket("/stream")
async def viewer_socket(websocket: WebSocket, device: str | None = Query(default=None)) -> None:
    """Viewer endpoint: ``ws://host:port/?device=<id>``."""
    gateway = _get_gateway(websocket.app)
    await websocket.accept()
    viewer = await gateway.on_connect(websocket, device)
    if viewer is None:
        return
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            payload = message.get("text")
            if payload is None:
                payload = message.get("bytes")
            if payload is None:
                continue
            await gateway.on_message(viewer, payload)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        await gateway.on_error(viewer, exc)
    finally:
        await gateway.on_close(viewer)


@router.get("/sessions")
async def list_sessions(request: Request) -> list[dict[str, Any]]:
    """Describe every live device session."""
    gateway = _get_gateway(request.app)
    return [session.describe() for session in gateway.registry]


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness for the relay process; says nothing about attached devices."""
    return {"status": "ok"}
