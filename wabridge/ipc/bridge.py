"""Input side of the IPC channel: read command lines, dispatch, report outcomes."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from ..errors import CommandError, describe_error
from .codec import decode_command
from .events import ErrorEvent, SendCommand, SentEvent
from .writer import EventWriter

logger = logging.getLogger("wabridge.ipc")

SendFunc = Callable[[str, str], Awaitable[None]]

# Generous line cap; a command is a short JSON object
MAX_LINE_BYTES = 16 * 1024 * 1024


class IPCBridge:
    """Reads newline-delimited JSON commands and dispatches them.

    Each line stands alone: a bad line yields exactly one `error` event and
    the next line is read as if nothing happened. A `send` runs as its own
    task, so a slow network round-trip never holds up the following line
    or inbound event delivery. Concurrent sends may finish in any order;
    each one produces exactly one `sent` or `error`.
    """

    def __init__(self, writer: EventWriter, send: SendFunc):
        self._writer = writer
        self._send = send
        self._inflight: set[asyncio.Task] = set()

    async def serve(self, reader: asyncio.StreamReader):
        """Process lines until EOF. EOF only stops command intake.

        A line longer than the reader's limit may arrive over several
        chunks. It is dropped up to and including its newline and reported
        once.
        """
        discarding = False
        while True:
            try:
                line = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; anything left is a final line without a terminator
                line = e.partial
                if not line:
                    logger.info("Input stream closed; no further commands will be read.")
                    return
            except asyncio.LimitOverrunError as e:
                await reader.readexactly(e.consumed)
                if not discarding:
                    discarding = True
                    logger.warning(f"Discarding over-long input line: {e}")
                    self._writer.emit(ErrorEvent(message="input line too long: discarded up to the next newline"))
                continue

            if discarding:
                # Tail of the over-long line
                discarding = not line.endswith(b"\n")
                continue
            self.handle_line(line)

    def handle_line(self, raw: Union[str, bytes]) -> Optional[asyncio.Task]:
        """Decode one line and dispatch it. Returns the send task, if any."""
        try:
            command = decode_command(raw)
        except CommandError as e:
            logger.warning(f"Rejected input line: {e}")
            self._writer.emit(ErrorEvent(message=describe_error(e)))
            return None

        if isinstance(command, SendCommand):
            task = asyncio.create_task(self._handle_send(command))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            return task
        return None

    async def _handle_send(self, command: SendCommand):
        message_id = command.message_id or ""
        try:
            await self._send(command.jid, command.text)
        except Exception as e:
            logger.error(f"Send to {command.jid} failed (messageId={message_id!r}): {e}")
            self._writer.emit(ErrorEvent(message=describe_error(e)))
            return
        logger.debug(f"Sent to {command.jid} (messageId={message_id!r})")
        self._writer.emit(SentEvent(jid=command.jid, message_id=message_id))

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self):
        """Wait for every in-flight send to reach its outcome."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def cancel_inflight(self):
        for task in list(self._inflight):
            task.cancel()
        await self.drain()
