"""
Shared session metadata: one record per room describing whether transcription is active.

Mutated only by the holder of the room's session lock (enforced by the relay); every
participant observes it through metadataChanged broadcasts.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

SttStatus = Literal["idle", "start", "end"]


class _MetadataModel(BaseModel):
    class Config:
        populate_by_name = True
        coerce_numbers_to_str = True
        extra = "ignore"

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LanguageSelection(_MetadataModel):
    """Recognized source language and optional translation targets."""

    source: str = Field("", description="Recognizer language, e.g. en-US")
    target: list[str] = Field(default_factory=list, description="Translation target languages")


class SttData(_MetadataModel):
    status: SttStatus = "idle"
    task_id: str | None = Field(None, alias="taskId")
    token: str | None = None
    start_time: int | None = Field(None, alias="startTime", description="unix ms")
    duration: int | None = Field(None, description="Configured session length, ms")


class SttDataPatch(_MetadataModel):
    """Partial update; only fields present in the payload are applied."""

    status: SttStatus | None = None
    task_id: str | None = Field(None, alias="taskId")
    token: str | None = None
    start_time: int | None = Field(None, alias="startTime")
    duration: int | None = None

    def apply_to(self, current: SttData) -> SttData:
        return current.model_copy(update=self.model_dump(exclude_unset=True))


class SessionMetadata(_MetadataModel):
    stt_data: SttData = Field(default_factory=SttData, alias="sttData")
    languages: list[LanguageSelection] = Field(default_factory=list)
