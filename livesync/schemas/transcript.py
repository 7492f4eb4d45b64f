"""
Textstream: the transcript fragment as it travels between participants.

One textstream carries one fragment: `words` holds a single entry whose isFinal flag says
whether the fragment is final (append-only) or interim (replaceable). The relay never
inspects it; clients parse it with Textstream.model_validate.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class _TextstreamModel(BaseModel):
    class Config:
        populate_by_name = True
        coerce_numbers_to_str = True
        extra = "ignore"


class Word(_TextstreamModel):
    text: str = ""
    start_ms: int = 0
    duration_ms: int = 0
    is_final: bool = Field(False, alias="isFinal")
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class Translation(_TextstreamModel):
    lang: str
    text: str = ""


class Textstream(_TextstreamModel):
    data_type: str = Field("transcribe", alias="dataType")
    culture: str = ""
    uid: str = Field(..., description="Speaker user id")
    start_text_ts: int = Field(0, alias="startTextTs", description="Utterance window start, unix ms")
    text_ts: int = Field(0, alias="textTs", description="Fragment timestamp, unix ms")
    time: int = 0
    duration_ms: int = Field(0, alias="durationMs", description="Offset from window start, ms")
    words: list[Word] = Field(default_factory=list)
    trans: list[Translation] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(w.text.strip() for w in self.words if w.text.strip())

    @property
    def is_final(self) -> bool:
        return bool(self.words) and all(w.is_final for w in self.words)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
