"""Tests for inbound message normalization."""

from wabridge.client.base import InboundBatch
from wabridge.ipc.events import MessageEvent
from wabridge.normalizer import MessageNormalizer, extract_text


def _raw(text=None, *, jid="628111@s.whatsapp.net", msg_id="ABC", from_me=False, push_name="Budi", message=None):
    if message is None and text is not None:
        message = {"conversation": text}
    raw = {"key": {"remoteJid": jid, "id": msg_id, "fromMe": from_me}, "message": message}
    if push_name is not None:
        raw["pushName"] = push_name
    return raw


class TestExtractText:
    def test_conversation(self):
        assert extract_text({"conversation": "hi"}) == "hi"

    def test_extended_text(self):
        assert extract_text({"extendedTextMessage": {"text": "quoted reply", "contextInfo": {}}}) == "quoted reply"

    def test_conversation_wins(self):
        assert extract_text({"conversation": "a", "extendedTextMessage": {"text": "b"}}) == "a"

    def test_empty_conversation_falls_through(self):
        assert extract_text({"conversation": "", "extendedTextMessage": {"text": "b"}}) == "b"

    def test_non_text(self):
        assert extract_text({"imageMessage": {"caption": "look"}}) == ""
        assert extract_text(None) == ""
        assert extract_text({"extendedTextMessage": "oops"}) == ""


class TestNormalize:
    def test_text_message(self):
        events = MessageNormalizer().normalize(InboundBatch(kind="notify", messages=[_raw("halo")]))
        assert events == [
            MessageEvent(jid="628111@s.whatsapp.net", text="halo", push_name="Budi", message_id="ABC", from_me=False)
        ]

    def test_history_batches_dropped(self):
        normalizer = MessageNormalizer()
        assert normalizer.normalize(InboundBatch(kind="append", messages=[_raw("old")])) == []
        assert normalizer.normalize(InboundBatch(kind="history", messages=[_raw("old")])) == []

    def test_non_text_dropped(self):
        batch = InboundBatch(kind="notify", messages=[
            _raw(message={"imageMessage": {"caption": "pic"}}),
            _raw(message=None),
            _raw("kept"),
        ])
        events = MessageNormalizer().normalize(batch)
        assert [e.text for e in events] == ["kept"]

    def test_order_preserved(self):
        batch = InboundBatch(kind="notify", messages=[_raw(str(i), msg_id=str(i)) for i in range(5)])
        assert [e.message_id for e in MessageNormalizer().normalize(batch)] == ["0", "1", "2", "3", "4"]

    def test_own_messages_included_by_default(self):
        events = MessageNormalizer().normalize(InboundBatch(kind="notify", messages=[_raw("me", from_me=True)]))
        assert len(events) == 1
        assert events[0].from_me is True

    def test_own_messages_suppressed(self):
        normalizer = MessageNormalizer(include_own=False)
        batch = InboundBatch(kind="notify", messages=[_raw("me", from_me=True), _raw("them")])
        assert [e.text for e in normalizer.normalize(batch)] == ["them"]

    def test_missing_push_name_and_id(self):
        event = MessageNormalizer().normalize_message(_raw("hi", msg_id=None, push_name=None))
        assert event.push_name == ""
        assert event.message_id == ""

    def test_malformed_entries_dropped(self):
        normalizer = MessageNormalizer()
        assert normalizer.normalize_message("nope") is None
        assert normalizer.normalize_message({"message": {"conversation": "x"}}) is None
        assert normalizer.normalize_message({"key": "x", "message": {"conversation": "x"}}) is None
        assert normalizer.normalize_message(_raw("x", jid="")) is None
