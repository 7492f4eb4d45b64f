"""
RelayConnection: one participant websocket on the relay.

Outbound events go through a bounded queue drained by a writer task, so a broadcast never
waits on a slow or dead participant: send() is fire-and-forget. A failed websocket write
marks only this connection closed.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from livesync.config import get_settings

logger = logging.getLogger(__name__)


def _frame_to_json(event: str, data: dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": data}, ensure_ascii=False)


class RelayConnection:
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.id = connection_id or uuid.uuid4().hex[:12]
        self._ws = websocket
        settings = get_settings()
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=settings.RELAY_OUTBOX_SIZE)
        self._writer_task: asyncio.Task[Any] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: dict[str, Any]) -> None:
        """Queue one event for this participant. Never blocks; drops when the queue is full."""
        if self._closed:
            return
        try:
            self._outbox.put_nowait(_frame_to_json(event, data))
        except asyncio.QueueFull:
            logger.warning("Outbox full for connection %s, dropping %s", self.id, event)

    async def _writer(self) -> None:
        """Drain outbox in order. None = close."""
        while True:
            text = await self._outbox.get()
            if text is None:
                break
            try:
                await self._ws.send_text(text)
            except Exception as e:
                logger.info("Send to connection %s failed: %s", self.id, e)
                self._closed = True
                break

    def start(self) -> None:
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer())

    async def receive_text(self) -> str | None:
        """Next text frame, or None once the peer disconnects. Binary frames are skipped."""
        while not self._closed:
            msg = await self._ws.receive()
            if msg.get("type") == "websocket.disconnect":
                self._closed = True
                return None
            text = msg.get("text")
            if text is not None:
                return text
        return None

    async def close(self) -> None:
        """Flush queued events (bounded wait), then stop the writer."""
        if self._writer_task is None:
            self._closed = True
            return
        try:
            self._outbox.put_nowait(None)
        except asyncio.QueueFull:
            self._writer_task.cancel()
        try:
            await asyncio.wait_for(self._writer_task, timeout=5.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            self._writer_task.cancel()
        self._writer_task = None
        self._closed = True
