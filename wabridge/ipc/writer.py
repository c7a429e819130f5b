"""Single shared sink for outbound events."""

import logging
import threading
from typing import BinaryIO

from pydantic import BaseModel

from .codec import encode_event

logger = logging.getLogger("wabridge.ipc")


class EventWriter:
    """Writes events to the output stream, one whole line per write.

    Every emitter in the process goes through one writer so partial lines
    never interleave. After `close()` nothing more reaches the stream; this
    is how the terminal `disconnected` event stays last.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: BaseModel) -> bool:
        """Write one event. Returns False if the writer was already closed."""
        line = encode_event(event)
        with self._lock:
            if self._closed:
                logger.debug(f"Dropping event after close: {line[:120]!r}")
                return False
            self._stream.write(line)
            self._stream.flush()
        return True

    def close(self):
        with self._lock:
            self._closed = True
