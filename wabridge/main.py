"""wabridge main entry point."""

import asyncio
import logging
import os
import sys
from typing import BinaryIO, Optional

from pydantic import ValidationError

from .client import load_client_factory
from .config import BridgeSettings, load_settings
from .credentials import FileCredentialStore
from .errors import BridgeError, describe_error
from .ipc.bridge import MAX_LINE_BYTES, IPCBridge
from .ipc.events import ErrorEvent
from .ipc.writer import EventWriter
from .lifecycle import EXIT_FAILURE, ConnectionManager
from .normalizer import MessageNormalizer
from .pairing import PairingDisplay

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("wabridge")


def configure_logging(settings: BridgeSettings):
    """Send logs to stderr (and optionally a file). Stdout belongs to the IPC channel."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file:
        log_file = os.path.expanduser(settings.log_file)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=logging.WARNING, format=_log_format, handlers=handlers, force=True)
    logging.getLogger("wabridge").setLevel(settings.log_level)


async def open_stdin_reader() -> asyncio.StreamReader:
    """Wrap stdin in an asyncio StreamReader.

    Pipes, sockets and terminals are read through the event loop. A regular
    file (stdin redirected from disk) cannot be watched that way, so it is
    read whole in a thread and fed to the reader.
    """
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
    protocol = asyncio.StreamReaderProtocol(reader)
    try:
        await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)
    except ValueError:
        data = await asyncio.to_thread(sys.stdin.buffer.read)
        reader.feed_data(data)
        reader.feed_eof()
    return reader


async def run(
    settings: Optional[BridgeSettings] = None,
    reader: Optional[asyncio.StreamReader] = None,
    output: Optional[BinaryIO] = None,
) -> int:
    """Run the bridge until a terminal outcome. Returns the process exit code."""
    settings = settings or load_settings()
    writer = EventWriter(output or sys.stdout.buffer)

    try:
        client_factory = load_client_factory(settings)
        store = FileCredentialStore(settings.auth_dir)
    except BridgeError as e:
        message = f"Startup failed: {describe_error(e)}"
        logger.critical(message)
        writer.emit(ErrorEvent(message=message))
        return EXIT_FAILURE

    manager = ConnectionManager(
        client_factory,
        store,
        writer,
        MessageNormalizer(include_own=settings.include_own_messages),
        reconnect_delay=settings.reconnect_delay,
        max_rapid_failures=settings.max_rapid_failures,
        rapid_failure_window=settings.rapid_failure_window,
        pairing_display=PairingDisplay() if settings.print_qr else None,
    )
    bridge = IPCBridge(writer, manager.send_text)

    logger.info(f"Starting bridge (auth_dir={store.directory}, client={settings.client})")
    if reader is None:
        reader = await open_stdin_reader()
    serve_task = asyncio.create_task(bridge.serve(reader))

    try:
        return await manager.run()
    finally:
        serve_task.cancel()
        try:
            await serve_task
        except asyncio.CancelledError:
            pass
        await bridge.cancel_inflight()
        await manager.aclose()
        logger.info("Bridge stopped.")


def main(**overrides):
    """Entry point."""
    try:
        settings = load_settings(**overrides)
        configure_logging(settings)
    except (ValidationError, OSError) as e:
        EventWriter(sys.stdout.buffer).emit(ErrorEvent(message=f"Invalid configuration: {describe_error(e)}"))
        sys.exit(EXIT_FAILURE)
    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
