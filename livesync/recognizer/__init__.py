"""Recognizer: interface to the external speech-recognition provider."""
from .base import Recognizer, RecognitionResult
from .queue import QueueRecognizer

__all__ = ["QueueRecognizer", "RecognitionResult", "Recognizer"]
