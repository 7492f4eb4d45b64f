from .chat import ChatManager
from .lock import DistributedLock, LocalLockBackend, LockBackend, RelayLockBackend
from .presence import PresenceSync
from .transport import RelayTransport

__all__ = [
    "ChatManager",
    "DistributedLock",
    "LocalLockBackend",
    "LockBackend",
    "PresenceSync",
    "RelayLockBackend",
    "RelayTransport",
]
