"""
Wire schemas for the room relay.

Every frame on the relay websocket is {"event": <name>, "data": <payload>} in both
directions. Payload keys are camelCase on the wire (userId, userName, ...); models accept
either the wire alias or the Python field name. Numeric user ids are coerced to strings so
"42" and 42 identify the same participant.

Request models keep every field optional: handlers report missing fields as an `error`
event with a descriptive message instead of rejecting the frame wholesale.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from livesync.schemas.metadata import LanguageSelection, SttData


class WireModel(BaseModel):
    """Base for relay payloads: alias-aware, extra keys ignored, ids coerced to str."""

    class Config:
        populate_by_name = True
        coerce_numbers_to_str = True
        extra = "ignore"

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RelayFrame(BaseModel):
    """Envelope of one websocket text frame."""

    event: str = Field(..., min_length=1, description="Event name, e.g. joinChannel")
    data: Any = Field(None, description="Event payload (object)")


class JoinChannelRequest(WireModel):
    channel: str | None = None
    user_id: str | None = Field(None, alias="userId")
    user_name: str | None = Field(None, alias="userName")


class Member(WireModel):
    """One participant as announced to clients."""

    user_id: str = Field(..., alias="userId")
    user_name: str | None = Field(None, alias="userName")


class ChannelJoined(WireModel):
    """Join confirmation. members/metadata let a (re)joining client rebuild its mirrors."""

    channel: str
    user_id: str = Field(..., alias="userId")
    user_name: str = Field(..., alias="userName")
    members: list[Member] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class MembershipNotice(WireModel):
    """userJoined / userLeft. userLeft carries no name."""

    user_id: str = Field(..., alias="userId")
    user_name: str | None = Field(None, alias="userName")
    channel: str


class ChatMessageRequest(WireModel):
    id: str | None = None
    channel: str | None = None
    user_id: str | None = Field(None, alias="userId")
    user_name: str | None = Field(None, alias="userName")
    content: str | None = None
    timestamp: int | None = None


class ChatMessage(WireModel):
    """
    Canonical chat message. Immutable once built; id is the dedup key.
    id format: <userId>-<timestamp>[-<random>] (relay-assigned ids omit the random part).
    """

    id: str
    user_id: str = Field(..., alias="userId")
    user_name: str = Field("", alias="userName")
    content: str
    timestamp: int = Field(..., description="Producer-assigned unix ms")
    channel: str | None = None

    class Config:
        populate_by_name = True
        coerce_numbers_to_str = True
        extra = "ignore"
        frozen = True


class TranscriptionRequest(WireModel):
    channel: str | None = None
    user_id: str | None = Field(None, alias="userId")
    user_name: str | None = Field(None, alias="userName")
    textstream: dict[str, Any] | None = Field(None, description="Opaque to the relay; passed through as-is")


class TranscriptionBroadcast(WireModel):
    user_id: str = Field(..., alias="userId")
    user_name: str = Field("", alias="userName")
    textstream: dict[str, Any]
    channel: str


class LeaveChannelRequest(WireModel):
    channel: str | None = None
    user_id: str | None = Field(None, alias="userId")


class MetadataUpdateRequest(WireModel):
    """Patch of the room's session metadata. Only the lock holder may send it."""

    channel: str | None = None
    stt_data: dict[str, Any] | None = Field(None, alias="sttData")
    languages: list[LanguageSelection] | None = None


class MetadataChanged(WireModel):
    channel: str
    stt_data: SttData = Field(..., alias="sttData")
    languages: list[LanguageSelection] = Field(default_factory=list)


class LockRequest(WireModel):
    channel: str | None = None


class LockNotice(WireModel):
    """lockAcquired / lockReleased."""

    channel: str


class ErrorPayload(WireModel):
    """Sent to the violating caller only. event names the request that failed."""

    message: str
    error: str | None = None
    event: str | None = None
