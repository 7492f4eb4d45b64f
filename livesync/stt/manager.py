"""
SttManager: controls the room's transcription session.

start/stop/extend run under the room's session lock, so concurrent control calls from any
participant never interleave their metadata updates. Lifecycle of one session:

  start_transcription: lock -> reset aggregator -> start recognizer ->
                       updateMetadata(languages) + updateMetadata(sttData status=start) -> unlock
  stop_transcription:  lock -> stop recognizer (no fragment after this) ->
                       updateMetadata(sttData status=end) -> unlock

A failed start stops the recognizer, leaves the metadata at "end" (never "start") and
releases the lock before the error propagates.

Recognizer output goes through TranscriptAggregator. Every emitted fragment is published
locally as textstreamReceived; finals are also relayed to the room through ChatManager.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from livesync.client.chat import ChatManager
from livesync.client.presence import PresenceSync
from livesync.config import Settings, get_settings
from livesync.errors import NotInitializedError, RecognizerError
from livesync.events import EventBus, spawn
from livesync.recognizer.base import RecognitionResult, Recognizer
from livesync.schemas.metadata import SttDataPatch
from livesync.stt.languages import map_language_code, normalize_languages
from livesync.transcript.aggregator import TranscriptAggregator

logger = logging.getLogger(__name__)

# Recognizer error codes that do not end the session
IGNORED_ERRORS = frozenset({"no-speech"})


def _unix_ms() -> int:
    return int(time.time() * 1000)


class SttManager:
    def __init__(
        self,
        presence: PresenceSync,
        recognizer: Recognizer,
        chat: ChatManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.presence = presence
        self.chat = chat
        self.recognizer = recognizer
        self.events = EventBus()
        self.user_id = ""
        self.channel = ""
        self._init = False
        self._transcribing = False
        self._language = self._settings.STT_DEFAULT_LANGUAGE
        self._task_id: str | None = None
        self._aggregator = TranscriptAggregator(user_id="", culture=self._language)
        self._watchdog: asyncio.Task[Any] | None = None

    @property
    def has_init(self) -> bool:
        return self._init

    @property
    def is_transcribing(self) -> bool:
        return self._transcribing

    @property
    def aggregator(self) -> TranscriptAggregator:
        return self._aggregator

    async def init(self, user_id: str, channel: str, user_name: str) -> None:
        self.user_id = str(user_id)
        self.channel = channel
        await self.presence.join(channel, self.user_id, user_name)
        self._init = True

    def _require_init(self) -> None:
        if not self._init:
            raise NotInitializedError("please init first")

    async def start_transcription(self, languages: list[Any] | None = None) -> None:
        self._require_init()
        selections = normalize_languages(languages, self._settings.STT_DEFAULT_LANGUAGE)
        language = map_language_code(selections[0].source, self._settings.STT_DEFAULT_LANGUAGE)

        async with self.presence.hold_lock():
            # Restarting over a live session: a failure must clear its "start" status too
            metadata_touched = self.recognizer.is_running or self.presence.stt_data.status == "start"
            try:
                if self.recognizer.is_running:
                    await self._halt_recognizer()
                start_time = _unix_ms()
                task_id = uuid.uuid4().hex
                self._language = language
                self._aggregator.reset(culture=language, now_ms=start_time, user_id=self.user_id)
                self._transcribing = True
                await self.recognizer.start(language, self._on_result, self._on_error, self._on_end)
                self._task_id = task_id

                metadata_touched = True
                await asyncio.gather(
                    self.presence.update_languages(selections),
                    self.presence.update_stt_data(
                        SttDataPatch(
                            status="start",
                            task_id=task_id,
                            token=f"stt-token-{start_time}",
                            start_time=start_time,
                            duration=self._settings.STT_EXPERIENCE_DURATION_MS,
                        )
                    ),
                )
            except BaseException as e:
                logger.warning("Transcription start failed in %s: %s", self.channel, e)
                await self._halt_recognizer()
                self._task_id = None
                if metadata_touched:
                    await self._mark_ended()
                raise
        logger.info("Transcription started in %s (language=%s)", self.channel, language)

    async def stop_transcription(self) -> None:
        self._require_init()
        async with self.presence.hold_lock():
            await self._halt_recognizer()
            self._task_id = None
            await self.presence.update_stt_data(SttDataPatch(status="end"))
        logger.info("Transcription stopped in %s", self.channel)

    async def extend_duration(self, start_time: int | None = None, duration: int | None = None) -> None:
        """start_time, duration: ms. Unset (or zero) values are left unchanged."""
        self._require_init()
        patch: dict[str, Any] = {}
        if start_time:
            patch["startTime"] = start_time
        if duration:
            patch["duration"] = duration
        if not patch:
            return
        async with self.presence.hold_lock():
            await self.presence.update_stt_data(patch)

    async def query_transcription(self) -> dict[str, Any]:
        return {
            "status": "running" if self._transcribing else "stopped",
            "taskId": self._task_id,
            "language": self._language,
        }

    async def check_expiry(self, now_ms: int | None = None) -> bool:
        """Stop the session once startTime + duration has passed. Returns True if it stopped it."""
        stt_data = self.presence.stt_data
        if stt_data.status != "start" or stt_data.start_time is None or stt_data.duration is None:
            return False
        now = now_ms if now_ms is not None else _unix_ms()
        if now - stt_data.start_time <= stt_data.duration:
            return False
        logger.info("Transcription in %s expired after %d ms", self.channel, stt_data.duration)
        await self.stop_transcription()
        return True

    async def run_expiry_watchdog(self) -> None:
        while self._init:
            await asyncio.sleep(self._settings.STT_EXPIRY_CHECK_SECONDS)
            try:
                await self.check_expiry()
            except Exception as e:
                logger.warning("Expiry check failed: %s", e)

    def start_watchdog(self) -> asyncio.Task[Any]:
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = spawn(self.run_expiry_watchdog(), name="stt:expiry")
        return self._watchdog

    async def destroy(self) -> None:
        await self._halt_recognizer()
        self._aggregator.reset()
        self._init = False
        watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None and not watchdog.done():
            watchdog.cancel()
        await self.presence.destroy()
        self.events.remove_all_listeners()
        self.user_id = ""
        self.channel = ""
        self._task_id = None

    # --- internals ---

    async def _halt_recognizer(self) -> None:
        # Clear the flag first: results still queued in the recognizer are dropped
        self._transcribing = False
        try:
            await self.recognizer.stop()
        except RecognizerError as e:
            logger.warning("Error stopping recognizer: %s", e)

    async def _mark_ended(self) -> None:
        try:
            await self.presence.update_stt_data(SttDataPatch(status="end"))
        except Exception as e:
            logger.error("Could not reset session status after failed start: %s", e)

    def _on_result(self, result: RecognitionResult) -> None:
        if not self._transcribing:
            return
        fragment = self._aggregator.handle_result(result)
        if fragment is None:
            return
        self.events.emit("textstreamReceived", fragment)
        if fragment.is_final and self.chat is not None and self._init:
            spawn(self.chat.send_transcription(fragment), name="stt:relay")

    def _on_error(self, error: RecognizerError) -> None:
        if error.code in IGNORED_ERRORS:
            logger.debug("Recognizer: %s", error.code)
            return
        logger.error("Recognizer error %s: %s", error.code, error.message)
        if not self._transcribing:
            return
        self._transcribing = False
        self.events.emit("error", error)
        spawn(self._stop_after_error(), name="stt:error-stop")

    async def _stop_after_error(self) -> None:
        try:
            await self.stop_transcription()
        except Exception as e:
            logger.error("Stopping transcription after recognizer error failed: %s", e)

    def _on_end(self) -> None:
        if not self._transcribing:
            return
        logger.info("Recognizer ended while transcribing; restarting")
        spawn(self._restart(), name="stt:restart")

    async def _restart(self) -> None:
        if not self._transcribing:
            logger.debug("Transcription stopped before the recognizer restart ran")
            return
        try:
            await self.recognizer.start(self._language, self._on_result, self._on_error, self._on_end)
        except RecognizerError as e:
            logger.error("Failed to restart recognizer: %s", e)
            self._on_error(e)
            return
        if not self._transcribing:
            # Stopped while the recognizer was starting
            try:
                await self.recognizer.stop()
            except RecognizerError as e:
                logger.warning("Error stopping recognizer: %s", e)
