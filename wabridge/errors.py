"""Bridge exception hierarchy and error descriptions for `error` events."""

import asyncio

from pydantic import ValidationError


# ════════════════════════════════════════════════════════
# Bridge exception hierarchy: classify failures by type,
# not by string matching.  lifecycle.py and ipc catch these.
# ════════════════════════════════════════════════════════

class BridgeError(Exception):
    """Base class for all bridge errors."""
    pass

class CredentialStoreError(BridgeError):
    """Credential state could not be loaded or persisted."""
    pass

class ClientError(BridgeError):
    """Messaging client could not be built, connected or driven."""
    pass

class SendError(ClientError):
    """Outbound message was rejected or failed in transit."""
    pass

class NotConnectedError(ClientError):
    """No client handle exists to carry the request."""
    pass

class ProtocolError(BridgeError):
    """IPC line could not be decoded."""
    pass

class CommandError(ProtocolError):
    """Inbound IPC line is not a valid command."""
    pass


def _describe_validation(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "command"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def describe_error(e: BaseException) -> str:
    """Turn any exception into the `message` text of an `error` event.

    The host sees this string verbatim, so it carries the underlying
    failure description rather than a friendly rewrite.
    """
    # 1: Validation errors, one entry per field
    if isinstance(e, ValidationError):
        return _describe_validation(e)

    # 2: Timeouts usually carry no text
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)) and not str(e):
        return "timed out"

    # 3: Own message, or type name as fallback
    msg = str(e).strip()
    if msg:
        return msg
    return type(e).__name__
