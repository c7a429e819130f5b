"""Base MessagingClient class: every messaging adapter inherits from this."""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("wabridge.client")

# Subscription names
CONNECTION_UPDATE = "connection.update"
CREDS_UPDATE = "creds.update"
MESSAGES_UPSERT = "messages.upsert"

EVENTS = (CONNECTION_UPDATE, CREDS_UPDATE, MESSAGES_UPSERT)

# Batch kinds: only "notify" is real-time delivery
BATCH_NOTIFY = "notify"
BATCH_APPEND = "append"

EventHandler = Callable[[Any], Awaitable[None]]


class DisconnectReason(str, Enum):
    """Why a connection closed. Only LOGGED_OUT is terminal."""

    LOGGED_OUT = "logged_out"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_REPLACED = "connection_replaced"
    TIMED_OUT = "timed_out"
    RESTART_REQUIRED = "restart_required"
    UNKNOWN = "unknown"

    @property
    def terminal(self) -> bool:
        return self is DisconnectReason.LOGGED_OUT


@dataclass
class ConnectionUpdate:
    """Payload of a `connection.update` notification.

    `connection` is "connecting", "open" or "close" (or None when the
    update only carries a pairing code). `reason` is set on "close".
    """

    connection: Optional[str] = None
    reason: Optional[DisconnectReason] = None
    qr: Optional[str] = None
    error: Optional[str] = None


@dataclass
class InboundBatch:
    """Payload of a `messages.upsert` notification.

    Messages keep the service's raw shape:
        {"key": {"remoteJid", "id", "fromMe"}, "pushName",
         "message": {"conversation" | "extendedTextMessage": {"text"} | ...}}
    """

    kind: str
    messages: list[dict] = field(default_factory=list)


class MessagingClient(ABC):
    """Base class for messaging service adapters.

    An adapter wraps one connection attempt to the service. It is created
    fresh for every attempt, so the lifecycle manager subscribes with `on()`
    on each new instance before calling `connect()`.

    Notifications are delivered with `_emit()`: handlers for one event are
    awaited in registration order, and an adapter never emits two
    notifications concurrently.
    """

    name: str = "unknown"

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler):
        """Subscribe `handler` to one of EVENTS."""
        if event not in EVENTS:
            raise ValueError(f"Unknown client event: {event}")
        self._handlers[event].append(handler)

    def remove_all_listeners(self):
        self._handlers.clear()

    async def _emit(self, event: str, payload: Any):
        for handler in list(self._handlers.get(event, ())):
            await handler(payload)

    @abstractmethod
    async def connect(self, credentials: Optional[dict]) -> None:
        """Start connecting using `credentials` (None means fresh pairing).

        Returns once the attempt is under way; the outcome arrives as
        `connection.update` notifications. Raises ClientError if the
        attempt cannot even be started.
        """
        pass

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> None:
        """Deliver a text message. Raises SendError (or another ClientError) on failure."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Tear the connection down. Must be safe to call more than once."""
        pass
