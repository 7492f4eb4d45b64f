"""
QueueRecognizer: recognizer fed from outside through an asyncio queue.

Used when recognition runs elsewhere (e.g. in a browser) and its results are forwarded to
this process, and as the recognizer in tests. push() enqueues a result, push_error() a
fault, push_end() an end-of-stream (as when the provider times out on silence).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Union

from livesync.errors import RecognizerError
from livesync.recognizer.base import (
    EndCallback,
    ErrorCallback,
    RecognitionResult,
    Recognizer,
    ResultCallback,
)

logger = logging.getLogger(__name__)

_END = object()

QueueItem = Union[RecognitionResult, RecognizerError, object]


class QueueRecognizer(Recognizer):
    def __init__(self, start_error: RecognizerError | None = None) -> None:
        self._queue: asyncio.Queue[QueueItem] = asyncio.Queue()
        self._task: asyncio.Task[Any] | None = None
        self._running = False
        self.start_error = start_error
        self.language: str | None = None
        self.start_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def push(self, text: str, is_final: bool, confidence: float = 1.0) -> None:
        self._queue.put_nowait(RecognitionResult(text=text, is_final=is_final, confidence=confidence))

    def push_error(self, error: RecognizerError) -> None:
        self._queue.put_nowait(error)

    def push_end(self) -> None:
        self._queue.put_nowait(_END)

    async def start(
        self,
        language: str,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        if self.start_error is not None:
            raise self.start_error
        if self._running:
            raise RecognizerError("already-started", "Recognizer is already running")
        self.language = language
        self.start_count += 1
        self._running = True
        self._task = asyncio.create_task(self._pump(on_result, on_error, on_end))

    async def _pump(self, on_result: ResultCallback, on_error: ErrorCallback, on_end: EndCallback) -> None:
        while self._running:
            item = await self._queue.get()
            if not self._running:
                break
            if item is _END:
                self._running = False
                on_end()
                break
            if isinstance(item, RecognizerError):
                on_error(item)
            elif isinstance(item, RecognitionResult):
                on_result(item)

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def drain(self) -> None:
        """Wait until every queued item has been delivered (test helper for deterministic ordering)."""
        while not self._queue.empty() and self._running:
            await asyncio.sleep(0)
        await asyncio.sleep(0)
