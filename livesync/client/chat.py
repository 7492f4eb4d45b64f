"""
ChatManager: chat messages and final transcript fragments over the relay.

Chat is broadcast to the whole room, author included; the author's copy is what confirms
an optimistic entry in ChatLog. Transcriptions go to everyone but the author, and an echo
of our own uid is ignored should one arrive anyway.
"""
from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import ValidationError

from livesync.chat_log import random_suffix
from livesync.client.transport import RelayTransport
from livesync.errors import NotConnectedError
from livesync.events import EventBus
from livesync.schemas.relay import ChatMessage, TranscriptionBroadcast
from livesync.schemas.transcript import Textstream

logger = logging.getLogger(__name__)


def _unix_ms() -> int:
    return int(time.time() * 1000)


class ChatManager:
    def __init__(self, transport: RelayTransport) -> None:
        self._transport = transport
        self.events = EventBus()
        self._channel: str | None = None
        self._user_id: str | None = None
        self._user_name = ""
        self._handlers = {
            "chatMessage": self._on_chat_message,
            "transcription": self._on_transcription,
            "connected": self._on_connected,
            "disconnected": self._on_disconnected,
            "error": self._on_error,
        }
        for event, handler in self._handlers.items():
            transport.events.on(event, handler)

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    async def join(self, channel: str, user_id: str, user_name: str) -> bool:
        self._channel = channel
        self._user_id = str(user_id)
        self._user_name = user_name
        return await self._transport.join(channel, user_id, user_name)

    async def send_chat_message(self, content: str, timestamp: int | None = None) -> ChatMessage:
        """Send to the room. The relay echoes it back as chatMessageReceived."""
        if not self.is_connected:
            raise NotConnectedError("Chat is not connected")
        content = (content or "").strip()
        if not content:
            raise ValueError("Message content cannot be empty")
        ts = timestamp if timestamp is not None else _unix_ms()
        message = ChatMessage(
            id=f"{self._user_id}-{ts}-{random_suffix()}",
            user_id=self._user_id or "",
            user_name=self._user_name,
            content=content,
            timestamp=ts,
            channel=self._channel,
        )
        await self._transport.send("chatMessage", message.to_wire())
        logger.debug("Chat sent %s: %s", message.id, content[:50])
        return message

    async def send_transcription(self, textstream: Textstream | dict[str, Any]) -> bool:
        """Relay a final fragment. Dropped (returns False) while offline."""
        if not self.is_connected:
            logger.warning("Transcription dropped: chat not connected")
            return False
        if isinstance(textstream, Textstream):
            textstream = textstream.to_wire()
        try:
            await self._transport.send(
                "transcription",
                {
                    "channel": self._channel,
                    "userId": self._user_id,
                    "userName": self._user_name,
                    "textstream": textstream,
                },
            )
        except NotConnectedError as e:
            logger.warning("Transcription dropped: %s", e)
            return False
        return True

    async def destroy(self) -> None:
        """Leave the room and close the connection."""
        for event, handler in self._handlers.items():
            self._transport.events.off(event, handler)
        self.events.remove_all_listeners()
        await self._transport.close()
        self._channel = None

    def _on_chat_message(self, data: dict[str, Any]) -> None:
        try:
            message = ChatMessage.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed chatMessage: %s", e)
            return
        self.events.emit("chatMessageReceived", message)

    def _on_transcription(self, data: dict[str, Any]) -> None:
        try:
            broadcast = TranscriptionBroadcast.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed transcription: %s", e)
            return
        if self._user_id is not None and str(broadcast.user_id) == self._user_id:
            return
        self.events.emit(
            "transcriptionReceived",
            {"userId": broadcast.user_id, "userName": broadcast.user_name, "textstream": broadcast.textstream},
        )

    def _on_connected(self) -> None:
        self.events.emit("connected")

    def _on_disconnected(self) -> None:
        self.events.emit("disconnected")

    def _on_error(self, data: Any) -> None:
        self.events.emit("error", data)
