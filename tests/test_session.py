import asyncio
from unittest.mock import AsyncMock

import pytest

from livesync.errors import NotConnectedError
from livesync.media import NullMediaTransport
from livesync.recognizer import QueueRecognizer
from livesync.session import LiveSession
from tests.conftest import wait_until

pytestmark = pytest.mark.asyncio


def build_session(make_transport, connection_id, user_id, user_name, **kwargs):
    return LiveSession(
        "room-1",
        user_id,
        user_name,
        transport=make_transport(connection_id),
        media=NullMediaTransport(),
        recognizer=QueueRecognizer(),
        **kwargs,
    )


async def test_start_joins_everything(relay, make_transport):
    session = build_session(make_transport, "a", "u1", "Alice")

    await session.start()

    assert session.media.joined
    assert session.media.published
    assert session.media.token is None
    assert [m.user_id for m in session.presence.members] == ["u1"]
    assert session.stt.is_transcribing
    assert relay.store.room("room-1").metadata.stt_data.status == "start"
    await session.destroy()


async def test_auto_start_failure_is_not_fatal(make_transport):
    session = LiveSession(
        "room-1",
        "u1",
        "Alice",
        transport=make_transport("a"),
        recognizer=QueueRecognizer(start_error=RuntimeError("no microphone")),
    )

    await session.start()

    assert session.stt.has_init
    assert not session.stt.is_transcribing


async def test_chat_is_deduplicated_against_the_echo(make_transport):
    alice = build_session(make_transport, "a", "u1", "Alice", auto_start_stt=False)
    bob = build_session(make_transport, "b", "u2", "Bob", auto_start_stt=False)
    await alice.start()
    await bob.start()

    sent = await alice.send_chat("hi")

    alice_messages = alice.chat_log.messages
    assert [m.content for m in alice_messages] == ["hi"]
    assert alice_messages[0].id == sent.id
    assert not alice_messages[0].id.startswith("temp-")
    assert [m.content for m in bob.chat_log.messages] == ["hi"]


async def test_failed_send_discards_optimistic_entry(make_transport):
    session = build_session(make_transport, "a", "u1", "Alice", auto_start_stt=False)
    await session.start()
    await asyncio.sleep(0)  # let the background chat join finish
    session.transport.drop()

    with pytest.raises(NotConnectedError):
        await session.send_chat("hello?")

    assert session.chat_log.messages == []


async def test_captions_combine_local_and_remote_fragments(make_transport):
    alice = build_session(make_transport, "a", "u1", "Alice")
    bob = build_session(make_transport, "b", "u2", "Bob", auto_start_stt=False)
    await alice.start()
    await bob.start()

    alice.stt.recognizer.push("good morning", is_final=False)
    await alice.stt.recognizer.drain()
    assert [(line.user_name, line.is_final) for line in alice.caption_lines()] == [("Alice", False)]

    alice.stt.recognizer.push("good morning everyone", is_final=True)
    await alice.stt.recognizer.drain()
    await wait_until(lambda: len(bob.caption_lines()) == 1)

    assert [(line.content, line.is_final) for line in alice.caption_lines()] == [("good morning everyone", True)]
    remote = bob.caption_lines()[0]
    assert remote.user_name == "Alice"
    assert remote.content == "good morning everyone"
    assert remote.is_final


async def test_new_session_clears_captions(make_transport):
    session = build_session(make_transport, "a", "u1", "Alice")
    await session.start()
    session.stt.recognizer.push("first session", is_final=True)
    await session.stt.recognizer.drain()
    assert len(session.caption_lines()) == 1

    await session.stt.stop_transcription()
    await session.stt.start_transcription()

    assert session.caption_lines() == []


async def test_destroy_tears_everything_down(relay, make_transport):
    alice = build_session(make_transport, "a", "u1", "Alice")
    bob = build_session(make_transport, "b", "u2", "Bob", auto_start_stt=False)
    await alice.start()
    await bob.start()

    await alice.destroy()

    assert not alice.media.joined
    assert not alice.stt.has_init
    assert not alice.transport.is_connected
    assert [m.user_id for m in bob.presence.members] == ["u2"]
    assert list(relay.store.room("room-1").participants) == ["u2"]


async def test_destroy_survives_a_failing_collaborator(make_transport):
    session = build_session(make_transport, "a", "u1", "Alice", auto_start_stt=False)
    await session.start()
    session.media.close = AsyncMock(side_effect=RuntimeError("media service gone"))

    await session.destroy()

    session.media.close.assert_awaited_once()
    assert not session.stt.has_init
    assert not session.transport.is_connected
