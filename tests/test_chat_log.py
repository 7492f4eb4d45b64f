import pytest

from livesync.chat_log import ChatLog, is_temp_id
from livesync.schemas.relay import ChatMessage


def server_message(id, user_id, content, timestamp, user_name=""):
    return ChatMessage(id=id, user_id=user_id, user_name=user_name, content=content, timestamp=timestamp)


class TestOptimisticEcho:
    def test_server_copy_replaces_temp_entry(self):
        log = ChatLog()
        temp = log.add_local("u1", "Alice", "hi", timestamp=990)
        assert is_temp_id(temp.id)

        log.add(server_message("u1-1000", "u1", "hi", 1000, "Alice"))

        hi = [m for m in log.messages if m.content == "hi"]
        assert len(hi) == 1
        assert hi[0].id == "u1-1000"
        assert hi[0].timestamp == 1000

    def test_match_on_author_timestamp_and_content(self):
        log = ChatLog()
        log.add_local("u1", "Alice", "hi", timestamp=1000)

        log.add(server_message("u1-1000-abc123", "u1", "hi", 1000))

        assert [m.id for m in log.messages] == ["u1-1000-abc123"]

    def test_repeated_delivery_is_not_duplicated(self):
        log = ChatLog()
        message = server_message("u2-500", "u2", "hello", 500)
        log.add(message)
        log.add(message)

        assert len(log) == 1

    def test_same_text_from_someone_else_is_a_new_message(self):
        log = ChatLog()
        log.add_local("u1", "Alice", "hi", timestamp=1000)

        log.add(server_message("u2-1001", "u2", "hi", 1001))

        assert len(log) == 2

    def test_oldest_pending_temp_is_confirmed_first(self):
        log = ChatLog()
        first = log.add_local("u1", "Alice", "ok", timestamp=100)
        second = log.add_local("u1", "Alice", "ok", timestamp=200)

        log.add(server_message("u1-105", "u1", "ok", 105))

        ids = [m.id for m in log.messages]
        assert "u1-105" in ids
        assert first.id not in ids
        assert second.id in ids

    def test_discard_failed_send(self):
        log = ChatLog()
        temp = log.add_local("u1", "Alice", "oops")

        assert log.discard_local(temp.id) is True
        assert log.discard_local(temp.id) is False
        assert len(log) == 0

    def test_empty_content_rejected(self):
        with pytest.raises(ValueError):
            ChatLog().add_local("u1", "Alice", "   ")


class TestOrdering:
    def test_sorted_by_timestamp(self):
        log = ChatLog()
        for ts in (300, 100, 200):
            log.add(server_message(f"u1-{ts}", "u1", f"m{ts}", ts))

        assert [m.timestamp for m in log.messages] == [100, 200, 300]

    def test_confirmed_message_moves_to_server_timestamp(self):
        log = ChatLog()
        log.add_local("u1", "Alice", "late", timestamp=100)
        log.add(server_message("u2-200", "u2", "middle", 200))

        log.add(server_message("u1-300", "u1", "late", 300))

        assert [m.content for m in log.messages] == ["middle", "late"]
