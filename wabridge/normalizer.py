"""Map inbound message batches to `message` events."""

import logging
from typing import Any, Optional

from .client.base import BATCH_NOTIFY, InboundBatch
from .ipc.events import MessageEvent

logger = logging.getLogger("wabridge.normalizer")

# Text-bearing shapes, in priority order: plain text, then extended/quoted text
TEXT_PATHS: tuple[tuple[str, ...], ...] = (
    ("conversation",),
    ("extendedTextMessage", "text"),
)

LIVE_BATCH_KINDS = frozenset({BATCH_NOTIFY})


def _dig(obj: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def extract_text(message: Optional[dict]) -> str:
    """Return the first populated text field, or "" for non-text content."""
    if not isinstance(message, dict):
        return ""
    for path in TEXT_PATHS:
        value = _dig(message, path)
        if isinstance(value, str) and value:
            return value
    return ""


class MessageNormalizer:
    """Turns raw service messages into canonical MessageEvents.

    Only live batches are surfaced; history replay on reconnect would
    otherwise flood the host with old messages. Non-text messages are
    dropped. Own-origin messages are surfaced with fromMe=true unless
    `include_own` is False.
    """

    def __init__(self, include_own: bool = True):
        self.include_own = include_own

    def normalize(self, batch: InboundBatch) -> list[MessageEvent]:
        if batch.kind not in LIVE_BATCH_KINDS:
            logger.debug(f"Skipping {batch.kind!r} batch ({len(batch.messages)} message(s))")
            return []

        events = []
        for raw in batch.messages:
            event = self.normalize_message(raw)
            if event is not None:
                events.append(event)
        return events

    def normalize_message(self, raw: Any) -> Optional[MessageEvent]:
        if not isinstance(raw, dict):
            return None
        key = raw.get("key")
        if not isinstance(key, dict):
            return None
        jid = key.get("remoteJid") or ""
        if not jid:
            return None

        from_me = bool(key.get("fromMe", False))
        if from_me and not self.include_own:
            return None

        text = extract_text(raw.get("message"))
        if not text:
            return None

        return MessageEvent(
            jid=jid,
            text=text,
            push_name=raw.get("pushName") or "",
            message_id=key.get("id") or "",
            from_me=from_me,
        )
