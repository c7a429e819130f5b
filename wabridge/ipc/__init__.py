"""IPC layer: line-delimited JSON over the bridge's stdin/stdout.

- Events: pydantic models of every outbound event and inbound command
- Codec: wire encoding and line decoding
- Writer: the single serialized output sink
- Bridge: input loop and command dispatch
"""

from .bridge import IPCBridge
from .codec import decode_command, decode_event, encode_event
from .events import (
    COMMANDS,
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    InboundCommand,
    MessageEvent,
    OutboundEvent,
    QrEvent,
    SendCommand,
    SentEvent,
)
from .writer import EventWriter

__all__ = [
    # Events
    "COMMANDS",
    "ConnectedEvent",
    "DisconnectedEvent",
    "ErrorEvent",
    "InboundCommand",
    "MessageEvent",
    "OutboundEvent",
    "QrEvent",
    "SendCommand",
    "SentEvent",
    # Codec
    "decode_command",
    "decode_event",
    "encode_event",
    # Runtime
    "EventWriter",
    "IPCBridge",
]
