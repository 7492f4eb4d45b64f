"""Media transport: opaque join/publish/close interface to the real-time media service."""
from .base import MediaTransport, NullMediaTransport

__all__ = ["MediaTransport", "NullMediaTransport"]
