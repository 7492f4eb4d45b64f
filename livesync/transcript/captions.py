"""
Caption store and projection.

CaptionStore holds every fragment seen in the room: local finals and interims from the
aggregator, remote finals from the relay. It keeps at most one interim per speaker
(a newer interim replaces it in place; a final from the speaker drops it).

project_captions() builds the ordered view the display consumes:
- every final fragment is a permanent line;
- per speaker, the most recent interim not yet superseded by a later final is one more line;
- lines sorted by fragment timestamp, oldest first.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from livesync.schemas.transcript import Textstream, Translation

LIVE = "live"  # caption language key for the recognized (untranslated) text


@dataclass
class TranscriptFragment:
    uid: str
    username: str
    text: str
    is_final: bool
    text_ts: int
    start_text_ts: int = 0
    duration_ms: int = 0
    translations: list[Translation] = field(default_factory=list)

    @classmethod
    def from_textstream(cls, textstream: Textstream, username: str = "") -> "TranscriptFragment":
        return cls(
            uid=str(textstream.uid),
            username=username,
            text=textstream.text,
            is_final=textstream.is_final,
            text_ts=textstream.text_ts,
            start_text_ts=textstream.start_text_ts,
            duration_ms=textstream.duration_ms,
            translations=list(textstream.trans),
        )


@dataclass
class CaptionLine:
    uid: str
    user_name: str
    content: str
    timestamp: int
    is_final: bool
    translations: list[Translation] = field(default_factory=list)


def _to_line(fragment: TranscriptFragment, languages: frozenset[str]) -> CaptionLine | None:
    content = fragment.text if LIVE in languages else ""
    translations = [t for t in fragment.translations if t.lang in languages]
    if not content and not translations:
        return None
    return CaptionLine(
        uid=fragment.uid,
        user_name=fragment.username,
        content=content,
        timestamp=fragment.text_ts,
        is_final=fragment.is_final,
        translations=translations,
    )


def project_captions(
    fragments: Iterable[TranscriptFragment],
    languages: Iterable[str] = (LIVE,),
) -> list[CaptionLine]:
    """Fragments in arrival order -> caption lines in timestamp order."""
    selected = frozenset(languages)
    finals: list[TranscriptFragment] = []
    latest_interim: dict[str, TranscriptFragment] = {}
    for fragment in fragments:
        if fragment.is_final:
            finals.append(fragment)
            latest_interim.pop(fragment.uid, None)
        else:
            current = latest_interim.get(fragment.uid)
            if current is None or fragment.text_ts >= current.text_ts:
                latest_interim[fragment.uid] = fragment

    lines: list[CaptionLine] = []
    for fragment in [*finals, *latest_interim.values()]:
        line = _to_line(fragment, selected)
        if line is not None:
            lines.append(line)
    lines.sort(key=lambda line: line.timestamp)
    return lines


class CaptionStore:
    def __init__(self) -> None:
        self._fragments: list[TranscriptFragment] = []

    @property
    def fragments(self) -> list[TranscriptFragment]:
        return list(self._fragments)

    def update(self, textstream: Textstream, username: str = "") -> TranscriptFragment | None:
        """Add one fragment. Empty text is discarded."""
        fragment = TranscriptFragment.from_textstream(textstream, username)
        if not fragment.text:
            return None
        interim_index = next(
            (i for i, f in enumerate(self._fragments) if f.uid == fragment.uid and not f.is_final),
            None,
        )
        if fragment.is_final:
            if interim_index is not None:
                del self._fragments[interim_index]
            self._fragments.append(fragment)
        elif interim_index is not None:
            self._fragments[interim_index] = fragment
        else:
            self._fragments.append(fragment)
        return fragment

    def clear(self) -> None:
        self._fragments.clear()

    def captions(self, languages: Iterable[str] = (LIVE,)) -> list[CaptionLine]:
        return project_captions(self._fragments, languages)
