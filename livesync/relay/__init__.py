"""Room relay: membership, fan-out, session metadata and session lock (server side)."""
from livesync.relay.connection import RelayConnection
from livesync.relay.service import RelayService
from livesync.relay.store import Binding, Participant, Room, RoomLock, RoomStore

__all__ = [
    "Binding",
    "Participant",
    "RelayConnection",
    "RelayService",
    "Room",
    "RoomLock",
    "RoomStore",
]
