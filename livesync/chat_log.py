"""
ChatLog: local ordered chat list with optimistic echo.

A send inserts a temp entry at once (id temp-<ts>-<random>) so the author sees it without
a round trip. The relay then broadcasts the authoritative copy to everyone, author
included. When that copy arrives it replaces the temp entry instead of adding a second
one. Matching, in order:
  1. same id (also covers a repeated delivery of an already confirmed message);
  2. same (userId, timestamp, content);
  3. an unconfirmed temp entry with the same (userId, content); the oldest one wins.
The list is kept sorted by timestamp; equal timestamps keep insertion order.
"""
from __future__ import annotations

import logging
import random
import string
import time

from livesync.schemas.relay import ChatMessage

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


def _unix_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 6) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_PREFIX)


class ChatLog:
    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_local(
        self,
        user_id: str,
        user_name: str,
        content: str,
        timestamp: int | None = None,
    ) -> ChatMessage:
        """Optimistic insert of the local user's message. Returns the temp entry."""
        content = content.strip()
        if not content:
            raise ValueError("Message content cannot be empty")
        ts = timestamp if timestamp is not None else _unix_ms()
        message = ChatMessage(
            id=f"{TEMP_PREFIX}{ts}-{random_suffix()}",
            user_id=str(user_id),
            user_name=user_name,
            content=content,
            timestamp=ts,
        )
        self._insert(message)
        return message

    def add(self, message: ChatMessage) -> ChatMessage:
        """Add a message received from the relay. The server copy wins over a matching temp entry."""
        index = self._find_match(message)
        if index is None:
            self._insert(message)
        else:
            replaced = self._messages[index]
            if replaced.id != message.id:
                logger.debug("Chat message %s confirmed as %s", replaced.id, message.id)
            self._messages[index] = message
            self._messages.sort(key=lambda m: m.timestamp)
        return message

    def discard_local(self, temp_id: str) -> bool:
        """Drop a temp entry whose send failed. Return True if it existed."""
        for i, message in enumerate(self._messages):
            if message.id == temp_id and is_temp_id(message.id):
                del self._messages[i]
                return True
        return False

    def _find_match(self, message: ChatMessage) -> int | None:
        for i, existing in enumerate(self._messages):
            if existing.id == message.id:
                return i
        for i, existing in enumerate(self._messages):
            if (
                existing.user_id == message.user_id
                and existing.timestamp == message.timestamp
                and existing.content == message.content
            ):
                return i
        for i, existing in enumerate(self._messages):
            if is_temp_id(existing.id) and existing.user_id == message.user_id and existing.content == message.content:
                return i
        return None

    def _insert(self, message: ChatMessage) -> None:
        index = len(self._messages)
        while index > 0 and self._messages[index - 1].timestamp > message.timestamp:
            index -= 1
        self._messages.insert(index, message)
