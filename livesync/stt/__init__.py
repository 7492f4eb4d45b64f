"""Transcription control: session start/stop under the room lock, recognizer wiring."""
from .languages import LANGUAGE_MAP, default_languages, map_language_code
from .manager import SttManager

__all__ = [
    "LANGUAGE_MAP",
    "SttManager",
    "default_languages",
    "map_language_code",
]
