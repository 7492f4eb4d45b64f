"""
RelayTransport: persistent client connection to the relay.

- Frames are JSON {"event": name, "data": payload}; every server event is re-emitted on
  `transport.events` under its own name.
- Reconnects automatically with exponential backoff: RECONNECT_DELAY_SECONDS * 2^(attempt-1),
  capped at RECONNECT_MAX_DELAY_SECONDS. Gives up after RECONNECT_ATTEMPTS consecutive failures.
  A connection that drops within RECONNECT_STABLE_SECONDS counts as a failure; one that lasted
  longer resets the count. Lifecycle events: connected, disconnected, reconnecting(attempt),
  connect_error(exc), reconnect_failed.
- The last join is replayed on every (re)connection so membership survives a reconnect.
- connect()/join() never hang on network trouble: they return after JOIN_TIMEOUT_SECONDS
  (or JOIN_ERROR_GRACE_SECONDS after a connect error) even if still offline, and the
  connection keeps trying in the background. A later success shows up as a `connected` event.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import websockets
from websockets.exceptions import WebSocketException

from livesync.config import Settings, get_settings
from livesync.errors import NotConnectedError
from livesync.events import EventBus

logger = logging.getLogger(__name__)

ConnectFactory = Callable[..., Any]


class RelayTransport:
    def __init__(
        self,
        url: str | None = None,
        settings: Settings | None = None,
        connect_factory: ConnectFactory | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.url = url or self._settings.RELAY_URL
        self.events = EventBus()
        self._connect_factory = connect_factory or websockets.connect
        self._ws: Any = None
        self._connected = False
        self._closing = False
        self._run_task: asyncio.Task[Any] | None = None
        self._join_data: dict[str, str] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected and self._ws is not None

    @property
    def join_data(self) -> dict[str, str] | None:
        return dict(self._join_data) if self._join_data else None

    async def join(self, channel: str, user_id: str, user_name: str) -> bool:
        """Register (or change) the channel join and make sure the connection is up."""
        data = {"channel": channel, "userId": str(user_id), "userName": user_name}
        if data == self._join_data and self._run_task is not None:
            if self.is_connected:
                logger.debug("Already joined %s, skipping join", channel)
                return True
            return await self.connect()
        self._join_data = data
        if self.is_connected:
            await self.send("joinChannel", data)
            return True
        return await self.connect()

    async def connect(self) -> bool:
        """
        Start the connection loop if needed and wait for the first connection.
        Returns True if connected, False if it resolved on timeout (still trying in background).
        """
        if self.is_connected:
            return True
        self._closing = False
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.create_task(self._run())

        loop = asyncio.get_running_loop()
        connected = loop.create_future()
        failed = loop.create_future()

        def _on_connected() -> None:
            if not connected.done():
                connected.set_result(True)

        def _on_error(error: Exception) -> None:
            if not failed.done():
                failed.set_result(error)

        self.events.once("connected", _on_connected)
        self.events.once("connect_error", _on_error)
        try:
            done, _ = await asyncio.wait(
                {connected, failed},
                timeout=self._settings.JOIN_TIMEOUT_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if connected in done:
                return True
            if failed in done:
                logger.warning("Connection error during join: %s; waiting for reconnection", failed.result())
                try:
                    await asyncio.wait_for(asyncio.shield(connected), timeout=self._settings.JOIN_ERROR_GRACE_SECONDS)
                    return True
                except asyncio.TimeoutError:
                    pass
            logger.warning("Connection to %s not ready, continuing to reconnect in background", self.url)
            return self.is_connected
        finally:
            self.events.off("connected", _on_connected)
            self.events.off("connect_error", _on_error)
            for fut in (connected, failed):
                if not fut.done():
                    fut.cancel()

    def reconnect_delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect attempt `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(
            self._settings.RECONNECT_DELAY_SECONDS * 2 ** (attempt - 1),
            self._settings.RECONNECT_MAX_DELAY_SECONDS,
        )

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        failures = 0
        while not self._closing:
            connected_at: float | None = None
            try:
                async with self._connect_factory(
                    self.url,
                    ping_interval=self._settings.PING_INTERVAL_SECONDS,
                ) as ws:
                    connected_at = loop.time()
                    self._ws = ws
                    self._connected = True
                    logger.info("Connected to relay %s", self.url)
                    if self._join_data:
                        await self._send_frame("joinChannel", self._join_data)
                    self.events.emit("connected")
                    async for raw in ws:
                        self._dispatch(raw)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                if self._closing:
                    break
                if connected_at is not None:
                    logger.info("Relay connection lost: %s", e)
                else:
                    failures += 1
                    logger.warning("Relay connection error (attempt %d): %s", failures, e)
                    self.events.emit("connect_error", e)
            finally:
                if self._connected:
                    self._connected = False
                    self._ws = None
                    self.events.emit("disconnected")
            if self._closing:
                break
            if connected_at is not None:
                lifetime = loop.time() - connected_at
                if lifetime >= self._settings.RECONNECT_STABLE_SECONDS:
                    failures = 0
                else:
                    # Accepted then dropped right away: counts toward the attempt limit
                    failures += 1
                    logger.warning("Relay connection dropped after %.2fs (%d in a row)", lifetime, failures)
            if failures >= self._settings.RECONNECT_ATTEMPTS:
                logger.error("Giving up on %s after %d attempts", self.url, failures)
                self.events.emit("reconnect_failed")
                break
            attempt = max(failures, 1)
            self.events.emit("reconnecting", attempt)
            await asyncio.sleep(self.reconnect_delay(attempt))

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid frame from relay: %s", e)
            return
        if not isinstance(frame, dict) or not frame.get("event"):
            logger.warning("Frame without event from relay: %r", frame)
            return
        event = frame["event"]
        data = frame.get("data") or {}
        if event == "error":
            logger.warning("Relay error: %s", data.get("message") if isinstance(data, dict) else data)
        self.events.emit(event, data)

    async def _send_frame(self, event: str, data: dict[str, Any]) -> None:
        await self._ws.send(json.dumps({"event": event, "data": data}, ensure_ascii=False))

    async def send(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self.is_connected:
            raise NotConnectedError(f"Not connected to relay; cannot send {event}")
        try:
            await self._send_frame(event, data or {})
        except WebSocketException as e:
            raise NotConnectedError(f"Relay connection closed while sending {event}") from e

    async def close(self) -> None:
        """Leave (best effort) and stop reconnecting."""
        self._closing = True
        if self.is_connected and self._join_data:
            try:
                await self._send_frame(
                    "leaveChannel",
                    {"channel": self._join_data["channel"], "userId": self._join_data["userId"]},
                )
            except WebSocketException as e:
                logger.debug("leaveChannel on close failed: %s", e)
        ws = self._ws
        if ws is not None:
            await ws.close()
        task, self._run_task = self._run_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._join_data = None
