"""
In-memory room store for the relay. Owned by the RelayService actor: only handlers running
on the actor touch it, so no locking is needed. Nothing survives the process.

rooms:        channel -> Room (participants keyed by user id, lock, metadata)
bindings:     connection id -> Binding (channel, user) last joined on that connection
connections:  connection id -> connection object (anything with .id and .send(event, data))

A room exists from its first join until its last participant leaves.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from livesync.schemas.metadata import SessionMetadata
from livesync.schemas.relay import Member


class Connection(Protocol):
    id: str

    def send(self, event: str, data: dict[str, Any]) -> None: ...


@dataclass
class Participant:
    """One user in a room. connection_id changes on reconnect; user_id does not."""

    user_id: str
    user_name: str
    channel: str
    connection_id: str

    def as_member(self) -> Member:
        return Member(user_id=self.user_id, user_name=self.user_name)


@dataclass
class Binding:
    """What a connection last joined; used as defaults for later requests and on disconnect."""

    channel: str
    user_id: str
    user_name: str


@dataclass
class RoomLock:
    """FIFO session lock. holder / waiters are connection ids."""

    holder: str | None = None
    waiters: deque[str] = field(default_factory=deque)


@dataclass
class Room:
    channel: str
    participants: dict[str, Participant] = field(default_factory=dict)  # user_id -> Participant, join order
    lock: RoomLock = field(default_factory=RoomLock)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    @property
    def size(self) -> int:
        return len(self.participants)

    def members(self) -> list[Member]:
        return [p.as_member() for p in self.participants.values()]


class RoomStore:
    def __init__(self) -> None:
        self.rooms: dict[str, Room] = {}
        self.bindings: dict[str, Binding] = {}
        self.connections: dict[str, Connection] = {}

    # --- connections ---

    def register(self, connection: Connection) -> None:
        self.connections[connection.id] = connection

    def unregister(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)
        self.bindings.pop(connection_id, None)

    def connection(self, connection_id: str | None) -> Connection | None:
        if connection_id is None:
            return None
        return self.connections.get(connection_id)

    def binding(self, connection_id: str) -> Binding | None:
        return self.bindings.get(connection_id)

    def bind(self, connection_id: str, binding: Binding) -> None:
        self.bindings[connection_id] = binding

    def unbind(self, connection_id: str) -> None:
        self.bindings.pop(connection_id, None)

    # --- rooms ---

    def room(self, channel: str) -> Room | None:
        return self.rooms.get(channel)

    def get_or_create_room(self, channel: str) -> Room:
        room = self.rooms.get(channel)
        if room is None:
            room = Room(channel=channel)
            self.rooms[channel] = room
        return room

    def delete_room(self, channel: str) -> bool:
        """Remove room. Return True if it existed."""
        return self.rooms.pop(channel, None) is not None

    def room_connections(self, channel: str, exclude: str | None = None) -> list[Connection]:
        """Current connection of every participant in the room, in join order."""
        room = self.rooms.get(channel)
        if room is None:
            return []
        result: list[Connection] = []
        for participant in room.participants.values():
            if participant.connection_id == exclude:
                continue
            conn = self.connections.get(participant.connection_id)
            if conn is not None:
                result.append(conn)
        return result

    def snapshot(self) -> list[dict[str, Any]]:
        """Read-only view for debugging (/api/rooms)."""
        return [
            {
                "channel": room.channel,
                "members": [m.to_wire() for m in room.members()],
                "metadata": room.metadata.to_wire(),
                "lockHeld": room.lock.holder is not None,
                "lockWaiters": len(room.lock.waiters),
            }
            for room in self.rooms.values()
        ]
