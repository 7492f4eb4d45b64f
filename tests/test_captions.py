from livesync.schemas.transcript import Textstream, Translation, Word
from livesync.transcript import CaptionStore, TranscriptFragment, project_captions


def make_textstream(uid, text, ts, is_final, trans=()):
    return Textstream(
        uid=uid,
        start_text_ts=ts,
        text_ts=ts,
        time=ts,
        words=[Word(text=text, is_final=is_final, confidence=0.9)],
        trans=list(trans),
    )


def fragment(uid, text, ts, is_final):
    return TranscriptFragment(uid=uid, username=uid.upper(), text=text, is_final=is_final, text_ts=ts)


class TestProjection:
    def test_finals_are_ordered_by_timestamp(self):
        fragments = [fragment("u1", "third", 100, True), fragment("u2", "first", 50, True), fragment("u1", "second", 75, True)]

        lines = project_captions(fragments)

        assert [line.timestamp for line in lines] == [50, 75, 100]
        assert [line.content for line in lines] == ["first", "second", "third"]

    def test_latest_interim_per_speaker_is_shown(self):
        fragments = [
            fragment("u1", "hel", 10, False),
            fragment("u2", "good", 12, False),
            fragment("u1", "hello wor", 20, False),
        ]

        lines = project_captions(fragments)

        assert [(line.uid, line.content) for line in lines] == [("u2", "good"), ("u1", "hello wor")]
        assert not any(line.is_final for line in lines)

    def test_final_supersedes_earlier_interim(self):
        fragments = [
            fragment("u1", "hello wor", 20, False),
            fragment("u2", "good morning", 25, False),
            fragment("u1", "hello world", 30, True),
        ]

        lines = project_captions(fragments)

        assert [(line.uid, line.content, line.is_final) for line in lines] == [
            ("u2", "good morning", False),
            ("u1", "hello world", True),
        ]

    def test_interim_after_final_starts_a_new_line(self):
        fragments = [fragment("u1", "hello world", 30, True), fragment("u1", "how are", 40, False)]

        lines = project_captions(fragments)

        assert [line.content for line in lines] == ["hello world", "how are"]


class TestCaptionStore:
    def test_interim_replaced_in_place_then_dropped_by_final(self):
        store = CaptionStore()
        store.update(make_textstream("u1", "hel", 10, False), "Alice")
        store.update(make_textstream("u1", "hello", 15, False), "Alice")
        assert [f.text for f in store.fragments] == ["hello"]

        store.update(make_textstream("u1", "hello there", 20, True), "Alice")
        assert [(f.text, f.is_final) for f in store.fragments] == [("hello there", True)]

        lines = store.captions()
        assert lines[0].user_name == "Alice"
        assert lines[0].content == "hello there"

    def test_empty_text_is_discarded(self):
        store = CaptionStore()

        assert store.update(make_textstream("u1", "  ", 10, True)) is None
        assert store.fragments == []

    def test_remote_finals_interleave_by_timestamp(self):
        store = CaptionStore()
        store.update(make_textstream("u1", "local", 200, True), "Alice")
        store.update(make_textstream("u2", "remote earlier", 150, True), "Bob")

        assert [line.user_name for line in store.captions()] == ["Bob", "Alice"]

    def test_language_selection(self):
        store = CaptionStore()
        store.update(
            make_textstream("u1", "hello", 10, True, trans=[Translation(lang="zh-CN", text="你好")]),
            "Alice",
        )

        live = store.captions(["live"])
        assert live[0].content == "hello"
        assert live[0].translations == []

        translated = store.captions(["zh-CN"])
        assert translated[0].content == ""
        assert translated[0].translations[0].text == "你好"

        assert store.captions(["fr-FR"]) == []

    def test_clear(self):
        store = CaptionStore()
        store.update(make_textstream("u1", "hello", 10, True))
        store.clear()

        assert store.captions() == []
