"""Pydantic schemas for relay frames, session metadata and textstreams."""
from livesync.schemas.metadata import (
    LanguageSelection,
    SessionMetadata,
    SttData,
    SttDataPatch,
)
from livesync.schemas.relay import (
    ChannelJoined,
    ChatMessage,
    ErrorPayload,
    Member,
    RelayFrame,
)
from livesync.schemas.transcript import Textstream, Translation, Word

__all__ = [
    "ChannelJoined",
    "ChatMessage",
    "ErrorPayload",
    "LanguageSelection",
    "Member",
    "RelayFrame",
    "SessionMetadata",
    "SttData",
    "SttDataPatch",
    "Textstream",
    "Translation",
    "Word",
]
