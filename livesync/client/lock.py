"""
DistributedLock: at most one start/stop control operation per room at a time.

Two layers:
- a local asyncio.Lock serializes callers inside this process;
- a LockBackend obtains the room-wide grant (RelayLockBackend asks the relay, which
  queues holders FIFO; LocalLockBackend shares an asyncio.Lock between managers in one
  process).

release() must run exactly once per successful acquire(), on every exit path; use
`async with lock.hold():` so it does. Waiting is unbounded unless a timeout is configured.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from livesync.errors import LockTimeoutError, NotConnectedError, RelayError
from livesync.events import spawn

logger = logging.getLogger(__name__)


class LockBackend(ABC):
    @abstractmethod
    async def acquire(self) -> None:
        """Suspend until the room-wide grant is held."""
        ...

    @abstractmethod
    async def release(self) -> None:
        """Give the grant back. Must not raise for a grant the other side already dropped."""
        ...


class LocalLockBackend(LockBackend):
    """In-process grant. Pass the same instance to several managers to make them contend."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        await self._lock.acquire()

    async def release(self) -> None:
        if self._lock.locked():
            self._lock.release()


class RelayLockBackend(LockBackend):
    """
    Room lock held on the relay. acquireLock is answered by lockAcquired once the lock is
    free; a rejected request comes back as an error event tagged event=acquireLock.
    If the connection drops while waiting, the relay forgets the request, so it is re-sent
    after reconnecting. A grant that arrives after the waiter gave up is returned at once.
    """

    def __init__(self, transport: Any) -> None:
        self._transport = transport
        self._pending: asyncio.Future[None] | None = None
        self._abandoned = 0
        transport.events.on("lockAcquired", self._on_lock_acquired)
        transport.events.on("error", self._on_error)
        transport.events.on("connected", self._on_connected)

    def _on_lock_acquired(self, data: dict[str, Any]) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(None)
            return
        if self._abandoned:
            self._abandoned -= 1
            logger.debug("Returning lock granted after its waiter gave up")
            spawn(self._send_release(), name="lock:late-release")

    def _on_error(self, data: dict[str, Any]) -> None:
        if not isinstance(data, dict) or data.get("event") != "acquireLock":
            return
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(RelayError(data.get("message") or "Lock request rejected", data.get("error")))

    def _on_connected(self) -> None:
        if self._pending is not None and not self._pending.done():
            logger.info("Reconnected while waiting for the session lock; re-requesting")
            spawn(self._request(), name="lock:re-request")

    async def _request(self) -> None:
        try:
            await self._transport.send("acquireLock", {})
        except NotConnectedError as e:
            logger.info("acquireLock not sent (%s); will retry after reconnect", e)

    async def acquire(self) -> None:
        self._pending = asyncio.get_running_loop().create_future()
        try:
            await self._transport.send("acquireLock", {})
            await self._pending
        except asyncio.CancelledError:
            self._abandoned += 1
            raise
        finally:
            self._pending = None

    async def _send_release(self) -> None:
        try:
            await self._transport.send("releaseLock", {})
        except NotConnectedError as e:
            # The relay drops a disconnected holder's lock by itself
            logger.info("releaseLock not sent: %s", e)

    async def release(self) -> None:
        await self._send_release()


class DistributedLock:
    def __init__(self, backend: LockBackend, timeout: float | None = None) -> None:
        self._backend = backend
        self._timeout = timeout
        self._local = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._local.locked()

    async def acquire(self) -> None:
        if self._timeout is None:
            await self._acquire()
            return
        try:
            await asyncio.wait_for(self._acquire(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise LockTimeoutError(f"Session lock not granted within {self._timeout}s") from e

    async def _acquire(self) -> None:
        await self._local.acquire()
        try:
            await self._backend.acquire()
        except BaseException:
            self._local.release()
            raise

    async def release(self) -> None:
        try:
            await self._backend.release()
        finally:
            self._local.release()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            await self.release()
