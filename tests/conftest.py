"""
Shared test fixtures.

Provides:
- FakeConnection: relay-side connection that records every event sent to it
- LoopbackTransport: client transport wired straight to an in-process RelayService
  (no sockets; relay events are delivered synchronously to the client's event bus)
- Fast settings for reconnect/join timing
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from livesync.config import Settings
from livesync.errors import NotConnectedError
from livesync.events import EventBus
from livesync.relay import RelayService


class FakeConnection:
    """Relay connection that records (event, data) pairs."""

    def __init__(self, connection_id: str) -> None:
        self.id = connection_id
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def send(self, event: str, data: dict[str, Any]) -> None:
        self.sent.append((event, data))

    def received(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.sent if name == event]

    def clear(self) -> None:
        self.sent.clear()


class ClientEnd:
    """Relay-side end of a LoopbackTransport."""

    def __init__(self, connection_id: str, transport: "LoopbackTransport") -> None:
        self.id = connection_id
        self._transport = transport

    def send(self, event: str, data: dict[str, Any]) -> None:
        self._transport.events.emit(event, data)


class LoopbackTransport:
    """Stand-in for RelayTransport with the same surface (events, join, send, close)."""

    def __init__(self, relay: RelayService, connection_id: str = "c1") -> None:
        self.events = EventBus()
        self.relay = relay
        self.connection = ClientEnd(connection_id, self)
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self._connected = False
        self._join_data: dict[str, str] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def join_data(self) -> dict[str, str] | None:
        return dict(self._join_data) if self._join_data else None

    async def connect(self) -> bool:
        if not self._connected:
            self._connected = True
            self.relay.dispatch(self.connection, "connect")
            if self._join_data:
                self.relay.dispatch(self.connection, "joinChannel", self._join_data)
            self.events.emit("connected")
        return True

    async def join(self, channel: str, user_id: str, user_name: str) -> bool:
        data = {"channel": channel, "userId": str(user_id), "userName": user_name}
        if data == self._join_data and self._connected:
            return True
        self._join_data = data
        if self._connected:
            await self.send("joinChannel", data)
            return True
        return await self.connect()

    async def send(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self._connected:
            raise NotConnectedError(f"Not connected to relay; cannot send {event}")
        self.sent.append((event, data or {}))
        self.relay.dispatch(self.connection, event, data or {})

    def drop(self) -> None:
        """Simulate a lost connection (the relay sees a disconnect)."""
        if self._connected:
            self._connected = False
            self.relay.dispatch(self.connection, "disconnect")
            self.events.emit("disconnected")

    async def close(self) -> None:
        if self._connected and self._join_data:
            await self.send(
                "leaveChannel",
                {"channel": self._join_data["channel"], "userId": self._join_data["userId"]},
            )
        self.drop()
        self._join_data = None


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll predicate on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %.2fs" % timeout)
        await asyncio.sleep(0.005)


@pytest.fixture
def relay() -> RelayService:
    """Relay with its store; tests call dispatch() directly, so the actor is not started."""
    return RelayService()


@pytest.fixture
def connect(relay: RelayService) -> Callable[[str], FakeConnection]:
    """Factory: register a new FakeConnection with the relay."""

    def _connect(connection_id: str) -> FakeConnection:
        conn = FakeConnection(connection_id)
        relay.dispatch(conn, "connect")
        return conn

    return _connect


@pytest.fixture
def join(relay: RelayService) -> Callable[..., None]:
    def _join(conn: FakeConnection, user_id: str, user_name: str, channel: str = "room-1") -> None:
        relay.dispatch(conn, "joinChannel", {"channel": channel, "userId": user_id, "userName": user_name})

    return _join


@pytest.fixture
def make_transport(relay: RelayService) -> Callable[[str], LoopbackTransport]:
    def _make(connection_id: str) -> LoopbackTransport:
        return LoopbackTransport(relay, connection_id)

    return _make


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        RECONNECT_ATTEMPTS=3,
        RECONNECT_DELAY_SECONDS=0.01,
        RECONNECT_MAX_DELAY_SECONDS=0.02,
        RECONNECT_STABLE_SECONDS=1.0,
        JOIN_TIMEOUT_SECONDS=0.3,
        JOIN_ERROR_GRACE_SECONDS=0.05,
        PING_INTERVAL_SECONDS=5.0,
    )
