"""Host-side helper: run the bridge as a child process and talk to it.

    proc = await BridgeProcess.spawn(["wabridge", "start"], auth_dir="./auth_state")
    async for event in proc.events():
        if isinstance(event, MessageEvent):
            await proc.send_message(event.jid, f"echo: {event.text}")
        elif isinstance(event, DisconnectedEvent):
            break
    await proc.kill()
"""

import asyncio
import json
import logging
import os
from typing import AsyncIterator, Optional, Sequence

from .errors import ProtocolError
from .ipc.bridge import MAX_LINE_BYTES
from .ipc.codec import decode_event
from .ipc.events import OutboundEvent

logger = logging.getLogger("wabridge.host")

AUTH_DIR_ENV = "BAILEYS_AUTH_DIR"


class BridgeProcess:
    """A running bridge child with piped stdin/stdout; stderr is inherited."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self._write_lock = asyncio.Lock()

    @classmethod
    async def spawn(
        cls,
        command: Sequence[str],
        auth_dir: Optional[str] = None,
        env: Optional[dict] = None,
        cwd: Optional[str] = None,
    ) -> "BridgeProcess":
        """Start the bridge. `auth_dir` is passed through BAILEYS_AUTH_DIR."""
        child_env = {**os.environ, **(env or {})}
        if auth_dir:
            child_env[AUTH_DIR_ENV] = auth_dir

        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=None,
            env=child_env,
            cwd=cwd,
            limit=MAX_LINE_BYTES,
        )
        logger.info(f"Bridge started (pid={process.pid}): {' '.join(command)}")
        return cls(process)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def events(self) -> AsyncIterator[OutboundEvent]:
        """Yield events until the bridge closes its stdout."""
        stdout = self._process.stdout
        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                logger.warning(f"Skipping over-long bridge line: {e}")
                continue
            if not line:
                return
            try:
                event = decode_event(line)
            except ProtocolError as e:
                logger.warning(f"Bridge parse error: {e}: {line[:200]!r}")
                continue
            yield event

    async def send_message(self, jid: str, text: str, message_id: Optional[str] = None):
        """Queue one `send` command. The outcome arrives as a `sent` or `error` event."""
        command = {"type": "send", "jid": jid, "text": text}
        if message_id is not None:
            command["messageId"] = message_id
        line = json.dumps(command, ensure_ascii=False, separators=(",", ":")) + "\n"
        async with self._write_lock:
            self._process.stdin.write(line.encode("utf-8"))
            await self._process.stdin.drain()

    async def wait(self) -> int:
        return await self._process.wait()

    async def kill(self, timeout: float = 5.0) -> int:
        """Terminate the bridge, killing it if it does not exit within `timeout`."""
        if self._process.returncode is not None:
            return self._process.returncode
        if self._process.stdin and not self._process.stdin.is_closing():
            self._process.stdin.close()
        try:
            self._process.terminate()
            return await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self._process.kill()
            return await self._process.wait()
        except ProcessLookupError:
            return await self._process.wait()
