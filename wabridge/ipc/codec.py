"""Line codec for the IPC streams: one compact JSON object per line, UTF-8."""

import json
from typing import Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..errors import CommandError, ProtocolError, describe_error
from .events import COMMANDS, InboundCommand, OutboundEvent

_event_adapter: TypeAdapter = TypeAdapter(OutboundEvent)

_JSON_TYPE_NAMES = {
    list: "array",
    str: "string",
    int: "number",
    float: "number",
    bool: "boolean",
    type(None): "null",
}


def _to_text(line: Union[str, bytes]) -> str:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CommandError(f"invalid UTF-8 input: {e}") from e
    return line.rstrip("\r\n")


def encode_event(event: BaseModel) -> bytes:
    """Serialize one event to its wire line, terminator included."""
    return event.model_dump_json(by_alias=True).encode("utf-8") + b"\n"


def decode_command(line: Union[str, bytes]) -> InboundCommand:
    """Parse one input line into a command.

    Raises:
        CommandError: on invalid UTF-8, malformed JSON, a non-object value,
            a missing or unknown `type`, or fields that fail validation.
    """
    text = _to_text(line)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise CommandError(f"invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        kind = _JSON_TYPE_NAMES.get(type(payload), type(payload).__name__)
        raise CommandError(f"command must be a JSON object, got {kind}")

    tag = payload.get("type")
    if tag is None:
        raise CommandError("command is missing 'type'")
    model = COMMANDS.get(tag) if isinstance(tag, str) else None
    if model is None:
        raise CommandError(f"unknown command type: {json.dumps(tag, ensure_ascii=False)}")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise CommandError(f"invalid {tag} command: {describe_error(e)}") from e


def decode_event(line: Union[str, bytes]) -> OutboundEvent:
    """Parse one output line back into an event (host side)."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"invalid UTF-8 output: {e}") from e
    try:
        return _event_adapter.validate_json(line.rstrip("\r\n"))
    except ValidationError as e:
        raise ProtocolError(f"invalid event: {describe_error(e)}") from e
