"""
FastAPI app: room relay over WebSocket; small HTTP surface for health and debugging.

Client sends JSON text frames {"event": name, "data": payload}; the server answers with
frames of the same shape. See livesync.relay.service for the event set.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from livesync.config import get_settings
from livesync.errors import RelayStoppedError
from livesync.relay import RelayConnection, RelayService
from livesync.schemas.relay import ErrorPayload, RelayFrame

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = RelayService()
    relay.start()
    app.state.relay = relay
    logger.info("Relay service started")
    yield
    await relay.stop()
    app.state.relay = None
    logger.info("Relay service stopped")


app = FastAPI(
    title="Live session relay",
    description="Room membership, chat and transcript fan-out, shared session metadata and lock",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in get_settings().CORS_ORIGIN.split(",") if o.strip()],
    allow_methods=["GET", "POST"],
    allow_credentials=True,
)


def get_relay_service(a: FastAPI) -> RelayService:
    relay = getattr(a.state, "relay", None)
    if relay is None:
        raise RuntimeError("Relay not initialized (lifespan not run?)")
    return relay


@app.websocket("/ws/relay")
async def websocket_relay(websocket: WebSocket) -> None:
    """One participant connection. Frames are handled strictly in arrival order."""
    await websocket.accept()
    relay = get_relay_service(websocket.app)
    connection = RelayConnection(websocket)
    connection.start()
    await relay.submit(connection, "connect")
    try:
        while True:
            text = await connection.receive_text()
            if text is None:
                break
            try:
                frame = RelayFrame.model_validate_json(text)
            except ValidationError:
                connection.send("error", ErrorPayload(message="Malformed frame").to_wire())
                continue
            await relay.submit(connection, frame.event, frame.data)
    except WebSocketDisconnect:
        pass
    finally:
        await release_connection(relay, connection)


async def release_connection(relay: RelayService, connection: RelayConnection) -> None:
    """Tell the relay the participant is gone, then flush and close its socket."""
    try:
        await relay.submit(connection, "disconnect")
    except RelayStoppedError as e:
        # Server shutting down; the rooms went with the relay
        logger.info("Disconnect of %s not delivered: %s", connection.id, e)
    await connection.close()


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/api/rooms")
async def list_rooms() -> list[dict]:
    """Current rooms with members, metadata and lock state."""
    return await get_relay_service(app).snapshot()
