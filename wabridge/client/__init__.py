"""Messaging client adapters.

The bridge only talks to the service through MessagingClient. The bundled
adapter drives the `wacli` binary; hosts can plug in another one with the
`client` setting (an import path such as "mypkg.adapters:MyClient").
"""

import importlib
import logging
from typing import Callable

from ..config import BridgeSettings
from ..errors import ClientError
from .base import (
    BATCH_APPEND,
    BATCH_NOTIFY,
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    EVENTS,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    InboundBatch,
    MessagingClient,
)

logger = logging.getLogger("wabridge.client")

ClientFactory = Callable[[], MessagingClient]


def load_client_factory(settings: BridgeSettings) -> ClientFactory:
    """Resolve `settings.client` to a zero-argument factory.

    The target is called with the settings object for every connection
    attempt, so each attempt gets a fresh adapter instance.

    Raises:
        ClientError: if the path is malformed, cannot be imported, or does
            not name a callable.
    """
    path = settings.client
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ClientError(f"Invalid client path {path!r} (expected 'module:attr')")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ClientError(f"Cannot import client module {module_name!r}: {e}") from e

    target = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ClientError(f"Client {path!r} not found")
    if not callable(target):
        raise ClientError(f"Client {path!r} is not callable")

    logger.debug(f"Using messaging client {path}")

    def factory() -> MessagingClient:
        return target(settings)

    return factory


__all__ = [
    "BATCH_APPEND",
    "BATCH_NOTIFY",
    "CONNECTION_UPDATE",
    "CREDS_UPDATE",
    "EVENTS",
    "MESSAGES_UPSERT",
    "ClientFactory",
    "ConnectionUpdate",
    "DisconnectReason",
    "InboundBatch",
    "MessagingClient",
    "load_client_factory",
]
