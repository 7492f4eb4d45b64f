"""Transcript handling: interim vs final diffing and the caption projection."""
from .aggregator import TranscriptAggregator, new_final_text
from .captions import CaptionLine, CaptionStore, TranscriptFragment, project_captions

__all__ = [
    "CaptionLine",
    "CaptionStore",
    "TranscriptAggregator",
    "TranscriptFragment",
    "new_final_text",
    "project_captions",
]
