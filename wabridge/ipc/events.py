"""IPC message types.

Every line the bridge writes is one OutboundEvent; every line it reads is
expected to be one InboundCommand. Tag strings and field names (including
their camelCase spelling on the wire) are a stable contract with the host.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# ── Outbound events (bridge → host) ─────────────────────────

class ConnectedEvent(_Message):
    """Session is usable."""

    type: Literal["connected"] = "connected"


class QrEvent(_Message):
    """Pairing code payload; the user must present it to the companion app."""

    type: Literal["qr"] = "qr"
    data: str


class MessageEvent(_Message):
    """Normalized inbound text message."""

    type: Literal["message"] = "message"
    jid: str
    text: str
    push_name: str = Field(default="", alias="pushName")
    message_id: str = Field(default="", alias="messageId")
    from_me: bool = Field(default=False, alias="fromMe")


class SentEvent(_Message):
    """Outbound send acknowledged."""

    type: Literal["sent"] = "sent"
    jid: str
    message_id: str = Field(default="", alias="messageId")


class DisconnectedEvent(_Message):
    """Terminal state; always the last event before exit."""

    type: Literal["disconnected"] = "disconnected"
    reason: Literal["logged_out"] = "logged_out"


class ErrorEvent(_Message):
    """Recoverable failure during command or event processing."""

    type: Literal["error"] = "error"
    message: str


OutboundEvent = Annotated[
    Union[ConnectedEvent, QrEvent, MessageEvent, SentEvent, DisconnectedEvent, ErrorEvent],
    Field(discriminator="type"),
]


# ── Inbound commands (host → bridge) ────────────────────────

class SendCommand(BaseModel):
    """Deliver a text message to `jid`."""

    type: Literal["send"]
    jid: str
    text: str
    message_id: Optional[str] = Field(default=None, alias="messageId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


InboundCommand = SendCommand

# tag → model; unknown tags are rejected, never ignored
COMMANDS: dict[str, type[BaseModel]] = {
    "send": SendCommand,
}
