import asyncio

import pytest

from livesync.client.lock import DistributedLock, LocalLockBackend, RelayLockBackend
from livesync.errors import LockTimeoutError, RelayError
from tests.conftest import wait_until

pytestmark = pytest.mark.asyncio


async def joined_transport(make_transport, connection_id, user_id):
    transport = make_transport(connection_id)
    await transport.join("room-1", user_id, user_id)
    return transport


class TestLocalBackend:
    async def test_second_holder_waits_for_release(self):
        backend = LocalLockBackend()
        first, second = DistributedLock(backend), DistributedLock(backend)
        order = []

        async def worker(lock, name):
            async with lock.hold():
                order.append(f"{name}:enter")
                await asyncio.sleep(0.02)
                order.append(f"{name}:exit")

        await asyncio.gather(worker(first, "a"), worker(second, "b"))

        assert order == ["a:enter", "a:exit", "b:enter", "b:exit"]
        assert not backend.locked

    async def test_hold_releases_on_error(self):
        backend = LocalLockBackend()
        lock = DistributedLock(backend)

        with pytest.raises(RuntimeError):
            async with lock.hold():
                raise RuntimeError("start failed")

        assert not lock.locked
        assert not backend.locked

    async def test_timeout_leaves_nothing_held(self):
        backend = LocalLockBackend()
        holder = DistributedLock(backend)
        waiter = DistributedLock(backend, timeout=0.05)
        await holder.acquire()

        with pytest.raises(LockTimeoutError):
            await waiter.acquire()

        assert not waiter.locked
        await holder.release()
        assert not backend.locked
        async with waiter.hold():
            assert backend.locked


class TestRelayBackend:
    async def test_grant_follows_release(self, relay, make_transport):
        a = await joined_transport(make_transport, "a", "u1")
        b = await joined_transport(make_transport, "b", "u2")
        lock_a = DistributedLock(RelayLockBackend(a))
        lock_b = DistributedLock(RelayLockBackend(b))

        await lock_a.acquire()
        waiting = asyncio.create_task(lock_b.acquire())
        await asyncio.sleep(0.01)
        assert not waiting.done()
        assert relay.store.room("room-1").lock.holder == "a"

        await lock_a.release()
        await asyncio.wait_for(waiting, timeout=1.0)
        assert relay.store.room("room-1").lock.holder == "b"

        await lock_b.release()
        assert relay.store.room("room-1").lock.holder is None

    async def test_rejected_request_raises(self, make_transport):
        transport = make_transport("a")
        await transport.connect()
        lock = DistributedLock(RelayLockBackend(transport))

        with pytest.raises(RelayError, match="You must join a channel first"):
            await lock.acquire()
        assert not lock.locked

    async def test_late_grant_is_returned(self, relay, make_transport):
        a = await joined_transport(make_transport, "a", "u1")
        b = await joined_transport(make_transport, "b", "u2")
        lock_a = DistributedLock(RelayLockBackend(a))
        lock_b = DistributedLock(RelayLockBackend(b), timeout=0.05)

        await lock_a.acquire()
        with pytest.raises(LockTimeoutError):
            await lock_b.acquire()

        # b is still queued on the relay; its grant arrives after it gave up
        await lock_a.release()
        await wait_until(lambda: relay.store.room("room-1").lock.holder is None)
        assert ("releaseLock", {}) in b.sent

    async def test_release_while_offline_does_not_raise(self, relay, make_transport):
        a = await joined_transport(make_transport, "a", "u1")
        lock = DistributedLock(RelayLockBackend(a))
        await lock.acquire()

        a.drop()
        await lock.release()

        assert not lock.locked
        assert relay.store.room("room-1") is None
