"""Exception types shared by the relay and the client managers."""
from __future__ import annotations


class LiveSyncError(Exception):
    """Base for all livesync errors."""


class RelayError(LiveSyncError):
    """Precondition violation in a relay handler. Reported to the caller only; no state change."""

    def __init__(self, message: str, error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error


class NotConnectedError(LiveSyncError):
    """Send attempted while the relay connection is down."""


class NotInitializedError(LiveSyncError):
    """Manager used before init()."""


class LockTimeoutError(LiveSyncError):
    """Session lock was not granted within the configured timeout."""


class RecognizerError(LiveSyncError):
    """Fault reported by the speech recognizer. code mirrors the recognizer's error name."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class PermissionDeniedError(RecognizerError):
    """Microphone access refused; fatal to the transcription session."""

    def __init__(self, message: str = "Microphone permission denied. Please allow microphone access.") -> None:
        super().__init__("not-allowed", message)


class RelayStoppedError(LiveSyncError):
    """Request submitted to a relay that is not running (before start or after stop)."""
