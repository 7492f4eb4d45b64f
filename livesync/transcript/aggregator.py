"""
TranscriptAggregator: turns one speaker's cumulative recognizer stream into fragments.

- INTERIM: the full trimmed text of the utterance so far; emitted only when it differs
  from the last interim emitted. Local only; never relayed.
- FINAL: only the part of the cumulative final text beyond the previous final
  (prefix match against last_final_transcript). Append-only; relayed to other participants.

Prefix matching is a heuristic: when the recognizer revises words it already finalized,
the new final no longer starts with last_final_transcript and the whole text is emitted
again. Captions can then repeat a few words; that is accepted for real-time display.
"""
from __future__ import annotations

import time

from livesync.config import get_settings
from livesync.recognizer.base import RecognitionResult
from livesync.schemas.transcript import Textstream, Word


def _unix_ms() -> int:
    return int(time.time() * 1000)


def new_final_text(full_text: str, last_final: str) -> str:
    """Suffix of full_text beyond last_final, trimmed. Whole text when it does not extend last_final."""
    full_text = full_text.strip()
    if last_final and full_text.startswith(last_final):
        return full_text[len(last_final):].strip()
    return full_text


class TranscriptAggregator:
    """
    Per-session diff state for the local speaker. Not thread-safe; call from the event loop.
    handle_result() returns the fragment to emit, or None when nothing changed.
    """

    def __init__(self, user_id: str, culture: str = "en-US") -> None:
        settings = get_settings()
        self._user_id = str(user_id)
        self._culture = culture
        self._final_confidence = settings.STT_FINAL_CONFIDENCE
        self._interim_confidence = settings.STT_INTERIM_CONFIDENCE
        self._last_final_transcript = ""
        self._last_interim_transcript = ""
        self._window_start_ms = 0

    @property
    def last_final_transcript(self) -> str:
        return self._last_final_transcript

    @property
    def last_interim_transcript(self) -> str:
        return self._last_interim_transcript

    def reset(self, culture: str | None = None, now_ms: int | None = None, user_id: str | None = None) -> None:
        """Start a new session: forget previous finals and interims."""
        if culture:
            self._culture = culture
        if user_id is not None:
            self._user_id = str(user_id)
        self._last_final_transcript = ""
        self._last_interim_transcript = ""
        self._window_start_ms = now_ms if now_ms is not None else _unix_ms()

    def handle_result(self, result: RecognitionResult, now_ms: int | None = None) -> Textstream | None:
        text = (result.text or "").strip()
        if not text:
            return None
        now = now_ms if now_ms is not None else _unix_ms()
        if not self._window_start_ms:
            self._window_start_ms = now
        if result.is_final:
            return self._on_final(text, now)
        return self._on_interim(text, now)

    def _on_final(self, full_text: str, now: int) -> Textstream | None:
        fragment_text = new_final_text(full_text, self._last_final_transcript)
        fragment = None
        if fragment_text:
            fragment = self._build(fragment_text, True, now)
        self._last_final_transcript = full_text
        # Next utterance starts a new cumulative window
        self._last_interim_transcript = ""
        self._window_start_ms = now
        return fragment

    def _on_interim(self, text: str, now: int) -> Textstream | None:
        if text == self._last_interim_transcript:
            return None
        self._last_interim_transcript = text
        return self._build(text, False, now)

    def _build(self, text: str, is_final: bool, now: int) -> Textstream:
        duration = max(0, now - self._window_start_ms)
        return Textstream(
            data_type="transcribe",
            culture=self._culture,
            uid=self._user_id,
            start_text_ts=self._window_start_ms,
            text_ts=now,
            time=now,
            duration_ms=duration,
            words=[
                Word(
                    text=text,
                    start_ms=0,
                    duration_ms=duration,
                    is_final=is_final,
                    confidence=self._final_confidence if is_final else self._interim_confidence,
                )
            ],
            trans=[],
        )
