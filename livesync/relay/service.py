"""
RelayService: room membership, chat/transcription fan-out, session metadata and the
per-room session lock.

Scheduling: the RoomStore is owned by a single actor task. Connections submit requests
onto the actor's inbox and each request's handler runs to completion before the next one
starts, so membership maps need no locking. A connection's reader awaits each submission,
which keeps one connection's requests strictly ordered; requests from different
connections interleave in arrival order.

Handlers validate fully before mutating anything. A violated precondition raises
RelayError, which dispatch() turns into an `error` event for the caller only. Outbound
events are queued on each connection (fire-and-forget).

Events handled: connect, joinChannel, chatMessage, transcription, leaveChannel,
updateMetadata, acquireLock, releaseLock, disconnect.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections import deque
from typing import Any, Callable

from pydantic import ValidationError

from livesync.errors import RelayError, RelayStoppedError
from livesync.relay.store import Binding, Connection, Participant, Room, RoomStore
from livesync.schemas.metadata import SttDataPatch
from livesync.schemas.relay import (
    ChannelJoined,
    ChatMessage,
    ChatMessageRequest,
    ErrorPayload,
    JoinChannelRequest,
    LeaveChannelRequest,
    LockNotice,
    LockRequest,
    MembershipNotice,
    MetadataChanged,
    MetadataUpdateRequest,
    TranscriptionBroadcast,
    TranscriptionRequest,
)

logger = logging.getLogger(__name__)

# Human-readable operation names for unexpected-failure messages ("Failed to join channel")
_OPERATION_NAMES = {
    "joinChannel": "join channel",
    "chatMessage": "send message",
    "transcription": "send transcription",
    "leaveChannel": "leave channel",
    "updateMetadata": "update metadata",
    "acquireLock": "acquire lock",
    "releaseLock": "release lock",
}


def _unix_ms() -> int:
    return int(time.time() * 1000)


class RelayService:
    def __init__(self, store: RoomStore | None = None) -> None:
        self._store = store or RoomStore()
        self._inbox: asyncio.Queue[tuple[Callable[[], Any], asyncio.Future[Any]] | None] | None = None
        self._task: asyncio.Task[Any] | None = None
        self._handlers: dict[str, Callable[[Connection, Any], None]] = {
            "connect": self._connect,
            "joinChannel": self._join_channel,
            "chatMessage": self._chat_message,
            "transcription": self._transcription,
            "leaveChannel": self._leave_channel,
            "updateMetadata": self._update_metadata,
            "acquireLock": self._acquire_lock,
            "releaseLock": self._release_lock,
            "disconnect": self._disconnect,
        }

    @property
    def store(self) -> RoomStore:
        return self._store

    # --- actor ---

    def start(self) -> None:
        if self._task is None:
            self._inbox = asyncio.Queue()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._inbox is not None
        self._inbox.put_nowait(None)
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            self._task.cancel()
        inbox, self._inbox = self._inbox, None
        self._task = None
        # Requests queued behind the shutdown marker are never run
        while not inbox.empty():
            item = inbox.get_nowait()
            if item is not None and not item[1].done():
                item[1].set_exception(RelayStoppedError("RelayService stopped"))

    async def _run(self) -> None:
        assert self._inbox is not None
        while True:
            item = await self._inbox.get()
            if item is None:
                break
            job, future = item
            try:
                result = job()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    async def call(self, job: Callable[[], Any]) -> Any:
        """Run job on the actor and return its result."""
        if self._task is None or self._inbox is None:
            raise RelayStoppedError("RelayService not started")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((job, future))
        return await future

    async def submit(self, connection: Connection, event: str, data: Any = None) -> None:
        await self.call(functools.partial(self.dispatch, connection, event, data))

    async def snapshot(self) -> list[dict[str, Any]]:
        return await self.call(self._store.snapshot)

    # --- dispatch ---

    def dispatch(self, connection: Connection, event: str, data: Any = None) -> None:
        """Run one handler synchronously. Must only be called from the actor (or a test)."""
        handler = self._handlers.get(event)
        try:
            if handler is None:
                raise RelayError(f"Unknown event: {event}")
            handler(connection, data)
        except RelayError as e:
            logger.warning("Rejected %s from %s: %s", event, connection.id, e.message)
            self._send_error(connection, event, e.message, e.error)
        except ValidationError as e:
            logger.warning("Invalid %s payload from %s: %s", event, connection.id, e)
            self._send_error(connection, event, f"Invalid {event} payload", str(e))
        except Exception as e:
            logger.exception("Error in %s for %s", event, connection.id)
            operation = _OPERATION_NAMES.get(event, event)
            self._send_error(connection, event, f"Failed to {operation}", str(e))

    def _send_error(self, connection: Connection, event: str, message: str, error: str | None = None) -> None:
        connection.send("error", ErrorPayload(message=message, error=error, event=event).to_wire())

    def _broadcast(
        self,
        channel: str,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> int:
        targets = self._store.room_connections(channel, exclude=exclude)
        for conn in targets:
            conn.send(event, payload)
        return len(targets)

    # --- helpers ---

    def _require_binding(self, connection: Connection) -> Binding:
        binding = self._store.binding(connection.id)
        if binding is None:
            raise RelayError("You must join a channel first")
        return binding

    def _require_room(self, binding: Binding, channel: str | None) -> Room:
        """Resolve the request channel (default: joined channel). Only the joined room is addressable."""
        target = channel or binding.channel
        if target != binding.channel:
            raise RelayError(f"Not a member of channel {target}")
        room = self._store.room(target)
        if room is None:
            raise RelayError("You must join a channel first")
        return room

    @staticmethod
    def _payload(data: Any) -> dict[str, Any]:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise RelayError("Payload must be an object")
        return data

    # --- handlers ---

    def _connect(self, connection: Connection, data: Any) -> None:
        self._store.register(connection)
        logger.info("Client connected: %s", connection.id)

    def _join_channel(self, connection: Connection, data: Any) -> None:
        req = JoinChannelRequest.model_validate(self._payload(data))
        if not req.channel or not req.user_id or not req.user_name:
            raise RelayError("Missing required fields: channel, userId, userName")
        channel, user_id, user_name = req.channel, req.user_id, req.user_name

        previous = self._store.binding(connection.id)
        room = self._store.room(channel)
        rejoin = (
            previous is not None
            and previous.channel == channel
            and previous.user_id == user_id
            and room is not None
            and user_id in room.participants
        )
        if previous is not None and not rejoin:
            # Drop stale membership before joining elsewhere (or as someone else)
            self._leave(connection, previous.channel, previous.user_id)

        room = self._store.get_or_create_room(channel)
        existing = room.participants.get(user_id)
        room.participants[user_id] = Participant(
            user_id=user_id,
            user_name=user_name,
            channel=channel,
            connection_id=connection.id,
        )
        self._store.bind(connection.id, Binding(channel=channel, user_id=user_id, user_name=user_name))

        if existing is None:
            logger.info("User %s (%s) joined channel: %s", user_name, user_id, channel)
            notice = MembershipNotice(user_id=user_id, user_name=user_name, channel=channel)
            self._broadcast(channel, "userJoined", notice.to_wire(), exclude=connection.id)
        elif existing.connection_id != connection.id:
            logger.info("User %s (%s) reconnected to channel %s on %s", user_name, user_id, channel, connection.id)
        else:
            logger.debug("User %s re-joined channel %s on the same connection", user_id, channel)

        confirmation = ChannelJoined(
            channel=channel,
            user_id=user_id,
            user_name=user_name,
            members=room.members(),
            metadata=room.metadata.to_wire(),
        )
        connection.send("channelJoined", confirmation.to_wire())

    def _chat_message(self, connection: Connection, data: Any) -> None:
        binding = self._require_binding(connection)
        req = ChatMessageRequest.model_validate(self._payload(data))
        content = (req.content or "").strip()
        if not content:
            raise RelayError("Message content cannot be empty")
        room = self._require_room(binding, req.channel)

        user_id = req.user_id or binding.user_id
        timestamp = req.timestamp or _unix_ms()
        message = ChatMessage(
            id=req.id or f"{user_id}-{timestamp}",
            user_id=user_id,
            user_name=req.user_name or binding.user_name,
            content=content,
            timestamp=timestamp,
            channel=room.channel,
        )
        logger.debug(
            "Message from %s (%s) in channel %s: %s",
            message.user_name,
            message.user_id,
            room.channel,
            message.content[:50],
        )
        # Sender included: it reconciles its optimistic copy against this one
        self._broadcast(room.channel, "chatMessage", message.to_wire())

    def _transcription(self, connection: Connection, data: Any) -> None:
        binding = self._require_binding(connection)
        req = TranscriptionRequest.model_validate(self._payload(data))
        if not req.textstream:
            raise RelayError("Transcription textstream cannot be empty")
        room = self._require_room(binding, req.channel)

        broadcast = TranscriptionBroadcast(
            user_id=req.user_id or binding.user_id,
            user_name=req.user_name or binding.user_name,
            textstream=req.textstream,
            channel=room.channel,
        )
        logger.debug("Transcription from %s (%s) in channel %s", broadcast.user_name, broadcast.user_id, room.channel)
        # Sender excluded: it already has the fragment locally
        self._broadcast(room.channel, "transcription", broadcast.to_wire(), exclude=connection.id)

    def _leave_channel(self, connection: Connection, data: Any) -> None:
        req = LeaveChannelRequest.model_validate(self._payload(data))
        binding = self._store.binding(connection.id)
        channel = req.channel or (binding.channel if binding else None)
        user_id = req.user_id or (binding.user_id if binding else None)
        if channel and user_id:
            self._leave(connection, channel, user_id)

    def _disconnect(self, connection: Connection, data: Any) -> None:
        binding = self._store.binding(connection.id)
        if binding is not None:
            self._leave(connection, binding.channel, binding.user_id)
        self._store.unregister(connection.id)
        logger.info("Client disconnected: %s", connection.id)

    def _leave(self, connection: Connection, channel: str, user_id: str) -> None:
        """Remove user_id from channel if this connection owns that membership."""
        binding = self._store.binding(connection.id)
        if binding is not None and binding.channel == channel and binding.user_id == user_id:
            self._store.unbind(connection.id)

        room = self._store.room(channel)
        if room is None:
            return
        self._drop_lock_claims(room, connection.id)

        participant = room.participants.get(user_id)
        if participant is None or participant.connection_id != connection.id:
            # Not a member, or the user already rebound to a newer connection
            return
        del room.participants[user_id]
        logger.info("User %s left channel: %s", user_id, channel)

        if not room.participants:
            self._store.delete_room(channel)
            logger.info("Channel %s is empty, removed", channel)
            return
        notice = MembershipNotice(user_id=user_id, channel=channel)
        self._broadcast(channel, "userLeft", notice.to_wire())

    # --- session metadata ---

    def _update_metadata(self, connection: Connection, data: Any) -> None:
        binding = self._require_binding(connection)
        req = MetadataUpdateRequest.model_validate(self._payload(data))
        room = self._require_room(binding, req.channel)
        if room.lock.holder != connection.id:
            raise RelayError("Acquire the session lock before updating metadata")
        if req.stt_data is None and req.languages is None:
            raise RelayError("Metadata update is empty")

        patch = SttDataPatch.model_validate(req.stt_data) if req.stt_data is not None else None
        if patch is not None:
            room.metadata.stt_data = patch.apply_to(room.metadata.stt_data)
        if req.languages is not None:
            room.metadata.languages = list(req.languages)

        changed = MetadataChanged(
            channel=room.channel,
            stt_data=room.metadata.stt_data,
            languages=room.metadata.languages,
        )
        logger.debug("Metadata of %s updated by %s: status=%s", room.channel, binding.user_id, room.metadata.stt_data.status)
        self._broadcast(room.channel, "metadataChanged", changed.to_wire())

    # --- session lock ---

    def _acquire_lock(self, connection: Connection, data: Any) -> None:
        binding = self._require_binding(connection)
        req = LockRequest.model_validate(self._payload(data))
        room = self._require_room(binding, req.channel)
        lock = room.lock
        if lock.holder == connection.id:
            raise RelayError("Lock already held by this connection")
        if lock.holder is None:
            lock.holder = connection.id
            connection.send("lockAcquired", LockNotice(channel=room.channel).to_wire())
            return
        if connection.id not in lock.waiters:
            lock.waiters.append(connection.id)
        logger.debug("Lock of %s busy, %s queued (%d waiting)", room.channel, connection.id, len(lock.waiters))

    def _release_lock(self, connection: Connection, data: Any) -> None:
        binding = self._require_binding(connection)
        req = LockRequest.model_validate(self._payload(data))
        room = self._require_room(binding, req.channel)
        if room.lock.holder != connection.id:
            raise RelayError("Lock is not held by this connection")
        connection.send("lockReleased", LockNotice(channel=room.channel).to_wire())
        self._grant_next(room)

    def _grant_next(self, room: Room) -> None:
        lock = room.lock
        lock.holder = None
        while lock.waiters:
            candidate = self._store.connection(lock.waiters.popleft())
            if candidate is None:
                continue
            lock.holder = candidate.id
            candidate.send("lockAcquired", LockNotice(channel=room.channel).to_wire())
            return

    def _drop_lock_claims(self, room: Room, connection_id: str) -> None:
        """A leaving connection gives up its hold and its place in the queue."""
        lock = room.lock
        if connection_id in lock.waiters:
            lock.waiters = deque(w for w in lock.waiters if w != connection_id)
        if lock.holder == connection_id:
            logger.warning("Lock holder %s left %s; releasing", connection_id, room.channel)
            self._grant_next(room)
