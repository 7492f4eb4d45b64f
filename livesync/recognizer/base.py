"""
Recognizer: abstract interface for the external speech-recognition provider.

The provider is a black box that emits, per utterance, any number of interim results and
exactly one final result. Results are cumulative: each one carries the full text recognized
so far in the current utterance, not a delta. Diffing happens in TranscriptAggregator.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from livesync.errors import RecognizerError


@dataclass
class RecognitionResult:
    """One recognizer event."""

    text: str  # cumulative text of the current utterance
    is_final: bool
    confidence: float = 1.0  # 0.0–1.0 estimate, when the provider reports one


ResultCallback = Callable[[RecognitionResult], None]
ErrorCallback = Callable[[RecognizerError], None]
EndCallback = Callable[[], None]


class Recognizer(ABC):
    """
    Abstract recognizer. Callbacks are invoked on the event loop.
    After stop() returns, no further callback may fire.
    """

    @abstractmethod
    async def start(
        self,
        language: str,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        """
        Begin continuous recognition in `language` (e.g. en-US).
        Raise RecognizerError (PermissionDeniedError for a refused microphone) if it cannot start.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognition. Idempotent."""
        ...

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...
