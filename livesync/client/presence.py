"""
PresenceSync: participant list and session metadata mirrors for one room.

The mirrors are rebuilt from the channelJoined snapshot on every (re)join and then kept
current from userJoined / userLeft / metadataChanged. Local updates are sent as
updateMetadata and applied only when the relay's metadataChanged broadcast comes back,
so every participant (sender included) sees the same sequence of states.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from pydantic import ValidationError

from livesync.client.lock import DistributedLock, LockBackend, RelayLockBackend
from livesync.client.transport import RelayTransport
from livesync.events import EventBus
from livesync.schemas.metadata import LanguageSelection, SessionMetadata, SttData, SttDataPatch
from livesync.schemas.relay import ChannelJoined, Member, MembershipNotice, MetadataChanged

logger = logging.getLogger(__name__)


class PresenceSync:
    def __init__(
        self,
        transport: RelayTransport,
        lock_backend: LockBackend | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self.events = EventBus()
        self._members: list[Member] = []
        self._metadata = SessionMetadata()
        self._channel: str | None = None
        self._user_id: str | None = None
        self.lock = DistributedLock(lock_backend or RelayLockBackend(transport), timeout=lock_timeout)
        self._handlers = {
            "channelJoined": self._on_channel_joined,
            "userJoined": self._on_user_joined,
            "userLeft": self._on_user_left,
            "metadataChanged": self._on_metadata_changed,
        }
        for event, handler in self._handlers.items():
            transport.events.on(event, handler)

    @property
    def channel(self) -> str | None:
        return self._channel

    @property
    def members(self) -> list[Member]:
        return list(self._members)

    @property
    def metadata(self) -> SessionMetadata:
        return self._metadata

    @property
    def stt_data(self) -> SttData:
        return self._metadata.stt_data

    @property
    def languages(self) -> list[LanguageSelection]:
        return list(self._metadata.languages)

    async def join(self, channel: str, user_id: str, user_name: str) -> bool:
        """Join the room. Resolves on timeout even if still offline (see RelayTransport.connect)."""
        self._channel = channel
        self._user_id = str(user_id)
        return await self._transport.join(channel, user_id, user_name)

    async def update_stt_data(self, patch: SttDataPatch | dict[str, Any]) -> None:
        if isinstance(patch, dict):
            patch = SttDataPatch.model_validate(patch)
        await self._transport.send(
            "updateMetadata",
            {"channel": self._channel, "sttData": patch.model_dump(by_alias=True, exclude_unset=True)},
        )

    async def update_languages(self, languages: list[LanguageSelection] | list[dict[str, Any]]) -> None:
        selections = [LanguageSelection.model_validate(item) for item in languages]
        await self._transport.send(
            "updateMetadata",
            {"channel": self._channel, "languages": [s.to_wire() for s in selections]},
        )

    async def acquire_lock(self) -> None:
        await self.lock.acquire()

    async def release_lock(self) -> None:
        await self.lock.release()

    @asynccontextmanager
    async def hold_lock(self) -> AsyncIterator[None]:
        async with self.lock.hold():
            yield

    async def destroy(self) -> None:
        for event, handler in self._handlers.items():
            self._transport.events.off(event, handler)
        self.events.remove_all_listeners()
        self._members = []
        self._metadata = SessionMetadata()
        self._channel = None

    # --- relay events ---

    def _on_channel_joined(self, data: dict[str, Any]) -> None:
        try:
            joined = ChannelJoined.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed channelJoined: %s", e)
            return
        self._channel = joined.channel
        self._members = list(joined.members)
        self.events.emit("userListChanged", self.members)
        if joined.metadata is not None:
            self._apply_metadata(SessionMetadata.model_validate(joined.metadata))

    def _on_user_joined(self, data: dict[str, Any]) -> None:
        try:
            notice = MembershipNotice.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed userJoined: %s", e)
            return
        for i, member in enumerate(self._members):
            if member.user_id == notice.user_id:
                self._members[i] = Member(user_id=notice.user_id, user_name=notice.user_name)
                break
        else:
            self._members.append(Member(user_id=notice.user_id, user_name=notice.user_name))
        self.events.emit("userListChanged", self.members)

    def _on_user_left(self, data: dict[str, Any]) -> None:
        try:
            notice = MembershipNotice.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed userLeft: %s", e)
            return
        remaining = [m for m in self._members if m.user_id != notice.user_id]
        if len(remaining) != len(self._members):
            self._members = remaining
            self.events.emit("userListChanged", self.members)

    def _on_metadata_changed(self, data: dict[str, Any]) -> None:
        try:
            changed = MetadataChanged.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed metadataChanged: %s", e)
            return
        self._apply_metadata(SessionMetadata(stt_data=changed.stt_data, languages=changed.languages))

    def _apply_metadata(self, metadata: SessionMetadata) -> None:
        previous = self._metadata
        self._metadata = metadata
        if metadata.stt_data != previous.stt_data:
            logger.info("Session status in %s: %s", self._channel, metadata.stt_data.status)
            self.events.emit("sttDataChanged", metadata.stt_data)
        if metadata.languages != previous.languages:
            self.events.emit("languagesChanged", self.languages)
