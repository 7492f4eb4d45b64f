import pytest

from livesync.client.chat import ChatManager
from livesync.errors import NotConnectedError
from livesync.schemas.transcript import Textstream, Word

pytestmark = pytest.mark.asyncio


async def joined_chat(make_transport, connection_id, user_id, user_name):
    chat = ChatManager(make_transport(connection_id))
    await chat.join("room-1", user_id, user_name)
    return chat


def final_textstream(uid, text, ts=1000):
    return Textstream(uid=uid, text_ts=ts, words=[Word(text=text, is_final=True, confidence=0.9)])


class TestChatMessages:
    async def test_message_reaches_sender_and_peer(self, make_transport):
        alice = await joined_chat(make_transport, "a", "u1", "Alice")
        bob = await joined_chat(make_transport, "b", "u2", "Bob")
        alice_seen, bob_seen = [], []
        alice.events.on("chatMessageReceived", alice_seen.append)
        bob.events.on("chatMessageReceived", bob_seen.append)

        sent = await alice.send_chat_message("hello", timestamp=1000)

        assert sent.id.startswith("u1-1000-")
        assert [m.id for m in alice_seen] == [sent.id]
        assert [m.id for m in bob_seen] == [sent.id]
        assert bob_seen[0].user_name == "Alice"
        assert bob_seen[0].content == "hello"

    async def test_offline_send_raises(self, make_transport):
        chat = ChatManager(make_transport("a"))

        assert chat.is_connected is False
        with pytest.raises(NotConnectedError):
            await chat.send_chat_message("hello")

    async def test_empty_message_rejected(self, make_transport):
        chat = await joined_chat(make_transport, "a", "u1", "Alice")

        with pytest.raises(ValueError):
            await chat.send_chat_message("   ")


class TestTranscriptions:
    async def test_final_fragment_reaches_peers_only(self, make_transport):
        alice = await joined_chat(make_transport, "a", "u1", "Alice")
        bob = await joined_chat(make_transport, "b", "u2", "Bob")
        alice_seen, bob_seen = [], []
        alice.events.on("transcriptionReceived", alice_seen.append)
        bob.events.on("transcriptionReceived", bob_seen.append)

        assert await alice.send_transcription(final_textstream("u1", "hello")) is True

        assert alice_seen == []
        assert len(bob_seen) == 1
        assert bob_seen[0]["userId"] == "u1"
        assert bob_seen[0]["userName"] == "Alice"
        assert bob_seen[0]["textstream"]["words"][0]["text"] == "hello"

    async def test_own_echo_is_ignored(self, make_transport):
        alice = await joined_chat(make_transport, "a", "u1", "Alice")
        seen = []
        alice.events.on("transcriptionReceived", seen.append)

        alice._transport.events.emit(
            "transcription",
            {"userId": 1, "userName": "Alice", "channel": "room-1", "textstream": {"uid": "1"}},
        )
        alice._user_id = "1"
        alice._transport.events.emit(
            "transcription",
            {"userId": 1, "userName": "Alice", "channel": "room-1", "textstream": {"uid": "1"}},
        )

        assert len(seen) == 1

    async def test_offline_transcription_is_dropped(self, make_transport):
        chat = ChatManager(make_transport("a"))

        assert await chat.send_transcription(final_textstream("u1", "hello")) is False


class TestLifecycle:
    async def test_connection_events_are_forwarded(self, make_transport):
        transport = make_transport("a")
        chat = ChatManager(transport)
        events = []
        chat.events.on("connected", lambda: events.append("connected"))
        chat.events.on("disconnected", lambda: events.append("disconnected"))

        await chat.join("room-1", "u1", "Alice")
        transport.drop()

        assert events == ["connected", "disconnected"]

    async def test_destroy_leaves_the_room(self, relay, make_transport):
        alice = await joined_chat(make_transport, "a", "u1", "Alice")
        await joined_chat(make_transport, "b", "u2", "Bob")

        await alice.destroy()

        assert [p for p in relay.store.room("room-1").participants] == ["u2"]
        assert alice.is_connected is False
