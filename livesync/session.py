"""
LiveSession: one participant's view of a room, composed from the managers.

All collaborators are passed in (or built here) and held on the instance; presence and chat
share one RelayTransport so a participant is a single member of the room.

start():
  1. fetch a media token (None when tokens are disabled)
  2. join media and presence concurrently
  3. publish local media
  4. join chat in the background (failure logged)
  5. start transcription (failure logged)

Caption and chat state:
  - local fragments (interim and final) and remote finals -> CaptionStore
  - chat broadcasts (own echoes included) -> ChatLog, replacing optimistic entries
  - a new transcription session (status start) clears the captions
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from livesync.chat_log import ChatLog
from livesync.client.chat import ChatManager
from livesync.client.lock import LockBackend
from livesync.client.presence import PresenceSync
from livesync.client.transport import RelayTransport
from livesync.config import Settings, get_settings
from livesync.events import EventBus, spawn
from livesync.media.base import MediaTransport, NullMediaTransport
from livesync.recognizer.base import Recognizer
from livesync.recognizer.queue import QueueRecognizer
from livesync.schemas.metadata import SttData
from livesync.schemas.relay import ChatMessage
from livesync.schemas.transcript import Textstream
from livesync.services.token_client import TokenClient
from livesync.stt.manager import SttManager
from livesync.transcript.captions import LIVE, CaptionLine, CaptionStore

logger = logging.getLogger(__name__)


class LiveSession:
    def __init__(
        self,
        channel: str,
        user_id: str,
        user_name: str,
        transport: RelayTransport | None = None,
        media: MediaTransport | None = None,
        recognizer: Recognizer | None = None,
        token_client: TokenClient | None = None,
        lock_backend: LockBackend | None = None,
        settings: Settings | None = None,
        languages: list[Any] | None = None,
        auto_start_stt: bool = True,
    ) -> None:
        self._settings = settings or get_settings()
        self.channel = channel
        self.user_id = str(user_id)
        self.user_name = user_name
        self.languages = languages
        self.auto_start_stt = auto_start_stt
        self.events = EventBus()

        self.transport = transport or RelayTransport(settings=self._settings)
        self.media = media or NullMediaTransport()
        self.token_client = token_client or TokenClient(self._settings)
        self.presence = PresenceSync(
            self.transport,
            lock_backend=lock_backend,
            lock_timeout=self._settings.LOCK_ACQUIRE_TIMEOUT_SECONDS,
        )
        self.chat = ChatManager(self.transport)
        self.stt = SttManager(
            self.presence,
            recognizer or QueueRecognizer(),
            chat=self.chat,
            settings=self._settings,
        )
        self.chat_log = ChatLog()
        self.captions = CaptionStore()
        self.token: str | None = None
        self._chat_task: asyncio.Task[Any] | None = None

        self.stt.events.on("textstreamReceived", self._on_local_textstream)
        self.stt.events.on("error", self._on_stt_error)
        self.chat.events.on("transcriptionReceived", self._on_remote_transcription)
        self.chat.events.on("chatMessageReceived", self._on_chat_message)
        self.presence.events.on("sttDataChanged", self._on_stt_data_changed)

    async def start(self) -> None:
        self.token = await self.token_client.get_token(self.user_id, self.channel)
        await asyncio.gather(
            self.media.join(self.channel, self.user_id, self.token),
            self.stt.init(self.user_id, self.channel, self.user_name),
        )
        await self.media.publish()
        self._chat_task = spawn(self._join_chat(), name="session:chat-join")
        if self.auto_start_stt:
            try:
                await self.stt.start_transcription(self.languages)
            except Exception as e:
                logger.warning("Auto-start of transcription failed: %s", e)
        logger.info("Session started: %s in %s", self.user_id, self.channel)

    async def _join_chat(self) -> None:
        try:
            await self.chat.join(self.channel, self.user_id, self.user_name)
        except Exception as e:
            logger.warning("Chat join failed, continuing without chat: %s", e)

    async def send_chat(self, content: str) -> ChatMessage:
        """Show the message at once; drop it again if the send fails."""
        if self._chat_task is not None and not self._chat_task.done():
            await asyncio.shield(self._chat_task)
        local = self.chat_log.add_local(self.user_id, self.user_name, content)
        self.events.emit("chatChanged", self.chat_log.messages)
        try:
            return await self.chat.send_chat_message(local.content, timestamp=local.timestamp)
        except Exception:
            self.chat_log.discard_local(local.id)
            self.events.emit("chatChanged", self.chat_log.messages)
            raise

    def caption_lines(self, languages: Iterable[str] = (LIVE,)) -> list[CaptionLine]:
        return self.captions.captions(languages)

    async def destroy(self) -> None:
        results = await asyncio.gather(
            self.media.close(),
            self.stt.destroy(),
            self.chat.destroy(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("Error during session teardown: %s", result)
        task, self._chat_task = self._chat_task, None
        if task is not None and not task.done():
            task.cancel()
        self.events.remove_all_listeners()
        logger.info("Session closed: %s in %s", self.user_id, self.channel)

    # --- event routing ---

    def _on_local_textstream(self, textstream: Textstream) -> None:
        if self.captions.update(textstream, self.user_name) is not None:
            self.events.emit("captionsChanged", self.captions.captions())

    def _on_remote_transcription(self, data: dict[str, Any]) -> None:
        try:
            textstream = Textstream.model_validate(data.get("textstream") or {})
        except ValidationError as e:
            logger.warning("Ignoring malformed remote textstream: %s", e)
            return
        if self.captions.update(textstream, data.get("userName") or "") is not None:
            self.events.emit("captionsChanged", self.captions.captions())

    def _on_chat_message(self, message: ChatMessage) -> None:
        self.chat_log.add(message)
        self.events.emit("chatChanged", self.chat_log.messages)

    def _on_stt_data_changed(self, stt_data: SttData) -> None:
        if stt_data.status == "start":
            self.captions.clear()
            self.events.emit("captionsChanged", [])

    def _on_stt_error(self, error: Exception) -> None:
        self.events.emit("error", error)
