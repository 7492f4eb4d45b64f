"""Recognizer language codes. Short codes map to a default region; full codes pass through."""
from __future__ import annotations

from typing import Any

from livesync.schemas.metadata import LanguageSelection

DEFAULT_LANGUAGE = "en-US"

LANGUAGE_MAP: dict[str, str] = {
    "en": "en-US",
    "zh": "zh-CN",
    "es": "es-ES",
    "fr": "fr-FR",
    "de": "de-DE",
    "ja": "ja-JP",
    "ko": "ko-KR",
    "pt": "pt-BR",
    "ru": "ru-RU",
    "it": "it-IT",
}


def map_language_code(language: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    language = (language or "").strip()
    if not language:
        return default
    return LANGUAGE_MAP.get(language, language)


def default_languages(source: str = DEFAULT_LANGUAGE) -> list[LanguageSelection]:
    return [LanguageSelection(source=source, target=[])]


def normalize_languages(languages: list[Any] | None, default: str = DEFAULT_LANGUAGE) -> list[LanguageSelection]:
    """Validate selections; an empty or missing list means the default language, no translation."""
    if not languages:
        return default_languages(default)
    return [LanguageSelection.model_validate(item) for item in languages]
