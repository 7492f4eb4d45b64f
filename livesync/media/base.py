"""
Media transport interface. Audio/video publish-subscribe is provided by an external
real-time media service; the session only joins, publishes local tracks and closes.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class MediaTransport(ABC):
    """Abstract media transport."""

    @abstractmethod
    async def join(self, channel: str, user_id: str, token: str | None) -> None:
        """Join the media channel. token is None when the service runs without tokens."""
        ...

    @abstractmethod
    async def publish(self) -> None:
        """Publish local audio/video tracks."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Unpublish and leave. Idempotent."""
        ...

    @property
    @abstractmethod
    def joined(self) -> bool:
        ...


class NullMediaTransport(MediaTransport):
    """Media disabled: tracks nothing, only remembers what it was asked to do."""

    def __init__(self) -> None:
        self.channel: str | None = None
        self.user_id: str | None = None
        self.token: str | None = None
        self.published = False
        self._joined = False

    @property
    def joined(self) -> bool:
        return self._joined

    async def join(self, channel: str, user_id: str, token: str | None) -> None:
        self.channel = channel
        self.user_id = str(user_id)
        self.token = token
        self._joined = True
        logger.info("Media disabled; joined %s as %s without media", channel, user_id)

    async def publish(self) -> None:
        self.published = self._joined

    async def close(self) -> None:
        self._joined = False
        self.published = False
