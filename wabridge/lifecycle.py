"""Connection lifecycle state machine.

    connecting ──open──▶ open
        ▲                 │
        │            close (transient)
        │                 ▼
        └──delay──── closed
                          │
                     close (logged out)
                          ▼
                  closed, terminal: emit `disconnected`, exit 1

Every attempt gets a fresh client handle. Subscriptions are bound to the
new handle before `connect()` so nothing delivered right after open is
missed, and notifications from a released handle are ignored.
"""

import asyncio
import copy
import functools
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from .client.base import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    InboundBatch,
    MessagingClient,
)
from .credentials import CredentialStore
from .errors import CredentialStoreError, NotConnectedError, describe_error
from .ipc.events import ConnectedEvent, DisconnectedEvent, ErrorEvent, QrEvent
from .ipc.writer import EventWriter
from .normalizer import MessageNormalizer
from .pairing import PairingDisplay

logger = logging.getLogger("wabridge.lifecycle")

EXIT_FAILURE = 1

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ConnectionManager:
    """Owns the connection state machine and the session credentials.

    `run()` is the lifecycle task: it returns only on a terminal outcome
    (logged out, startup failure, or too many rapid failures) and the
    value it returns is the process exit code.

    Args:
        client_factory: Builds a new MessagingClient per attempt.
        credential_store: Loads state once at startup, saves every update.
        writer: Output sink for lifecycle events.
        normalizer: Turns inbound batches into `message` events.
        reconnect_delay: Fixed delay before a new attempt after a transient
            close. Not exponential: the service enforces its own backoff.
        max_rapid_failures: Give up after this many consecutive attempts
            that closed within `rapid_failure_window` without ever opening.
            0 disables the cap.
        rapid_failure_window: Seconds, see above.
        pairing_display: Optional side channel for pairing codes.
        sleep: Injected delay (tests pass a fake).
        clock: Injected monotonic clock.
    """

    def __init__(
        self,
        client_factory: Callable[[], MessagingClient],
        credential_store: CredentialStore,
        writer: EventWriter,
        normalizer: Optional[MessageNormalizer] = None,
        *,
        reconnect_delay: float = 3.0,
        max_rapid_failures: int = 10,
        rapid_failure_window: float = 1.0,
        pairing_display: Optional[PairingDisplay] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self._client_factory = client_factory
        self._store = credential_store
        self._writer = writer
        self._normalizer = normalizer or MessageNormalizer()
        self._reconnect_delay = reconnect_delay
        self._max_rapid_failures = max_rapid_failures
        self._rapid_failure_window = rapid_failure_window
        self._pairing = pairing_display
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.CONNECTING
        self._client: Optional[MessagingClient] = None
        self._close_future: Optional[asyncio.Future] = None
        self._opened = False
        self._attempts = 0
        self._rapid_failures = 0

        self._credentials: dict = {}
        self._creds_dirty = False
        self._persist_task: Optional[asyncio.Task] = None

    # ── Introspection ───────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def client(self) -> Optional[MessagingClient]:
        return self._client

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def credentials(self) -> dict:
        return copy.deepcopy(self._credentials)

    # ── Lifecycle task ──────────────────────────────────────

    async def run(self) -> int:
        """Drive connection attempts until a terminal outcome; return the exit code."""
        try:
            stored = await self._store.load()
        except CredentialStoreError as e:
            return self._fail(f"Failed to load credentials: {describe_error(e)}")
        self._credentials = dict(stored or {})

        while True:
            self._attempts += 1
            try:
                client = self._client_factory()
            except Exception as e:
                return self._fail(f"Failed to create messaging client: {describe_error(e)}")

            reason = await self._run_attempt(client)
            if reason is None:
                return EXIT_FAILURE

            if reason.terminal:
                logger.error("Session was logged out by the remote end; not reconnecting.")
                self._writer.emit(DisconnectedEvent())
                self._writer.close()
                return EXIT_FAILURE

            if self._max_rapid_failures and self._rapid_failures >= self._max_rapid_failures:
                return self._fail(
                    f"Giving up after {self._rapid_failures} consecutive connection failures "
                    f"under {self._rapid_failure_window:g}s"
                )

            logger.info(
                f"Connection closed ({reason.value}); reconnecting in {self._reconnect_delay:g}s "
                f"(attempt {self._attempts + 1})"
            )
            await self._sleep(self._reconnect_delay)

    async def _run_attempt(self, client: MessagingClient) -> Optional[DisconnectReason]:
        """One connect → close cycle. Returns None on a fatal first-connect failure."""
        self._client = client
        self._close_future = asyncio.get_running_loop().create_future()
        self._opened = False
        self._set_state(ConnectionState.CONNECTING)
        self._bind(client)

        started = self._clock()
        try:
            await client.connect(self._credentials or None)
        except Exception as e:
            if self._attempts == 1:
                await self._release(client)
                self._fail(f"Failed to connect: {describe_error(e)}")
                return None
            logger.warning(f"Connect attempt {self._attempts} failed: {describe_error(e)}")
            reason = DisconnectReason.CONNECTION_LOST
        else:
            reason = await self._close_future

        self._set_state(ConnectionState.CLOSED)
        rapid = not self._opened and (self._clock() - started) < self._rapid_failure_window
        self._rapid_failures = self._rapid_failures + 1 if rapid else 0
        await self._release(client)
        return reason

    def _fail(self, message: str) -> int:
        logger.error(message)
        self._writer.emit(ErrorEvent(message=message))
        self._writer.close()
        return EXIT_FAILURE

    def _set_state(self, state: ConnectionState):
        if state is not self._state:
            logger.debug(f"State {self._state.value} -> {state.value}")
            self._state = state

    # ── Client handle ───────────────────────────────────────

    def _bind(self, client: MessagingClient):
        client.on(CONNECTION_UPDATE, functools.partial(self._on_connection_update, client))
        client.on(CREDS_UPDATE, functools.partial(self._on_creds_update, client))
        client.on(MESSAGES_UPSERT, functools.partial(self._on_messages_upsert, client))

    async def _release(self, client: MessagingClient):
        if self._client is client:
            self._client = None
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error while closing {client.name} client: {describe_error(e)}")
        client.remove_all_listeners()

    async def send_text(self, jid: str, text: str):
        """Send through the current handle; NotConnectedError between attempts."""
        client = self._client
        if client is None:
            raise NotConnectedError("not connected")
        await client.send_text(jid, text)

    # ── Notifications ───────────────────────────────────────

    async def _on_connection_update(self, client: MessagingClient, update: ConnectionUpdate):
        if client is not self._client:
            logger.debug(f"Ignoring update from released client: {update}")
            return

        if update.qr:
            logger.info("Pairing requested; waiting for the code to be scanned.")
            self._writer.emit(QrEvent(data=update.qr))
            if self._pairing:
                self._pairing.display(update.qr)

        if update.connection == "open":
            if self._state is not ConnectionState.OPEN:
                self._opened = True
                self._rapid_failures = 0
                self._set_state(ConnectionState.OPEN)
                logger.info("Connection open.")
                self._writer.emit(ConnectedEvent())
        elif update.connection == "close":
            reason = update.reason or DisconnectReason.UNKNOWN
            if update.error:
                logger.info(f"Connection closed ({reason.value}): {update.error}")
            self._set_state(ConnectionState.CLOSED)
            if self._close_future and not self._close_future.done():
                self._close_future.set_result(reason)

    async def _on_creds_update(self, client: MessagingClient, update: dict):
        if client is not self._client:
            return
        if not isinstance(update, dict):
            logger.warning(f"Ignoring non-object credential update: {type(update).__name__}")
            return
        self._credentials.update(update)
        self._schedule_persist()

    async def _on_messages_upsert(self, client: MessagingClient, batch: InboundBatch):
        if client is not self._client:
            return
        for event in self._normalizer.normalize(batch):
            self._writer.emit(event)

    # ── Credential persistence ──────────────────────────────

    def _schedule_persist(self):
        # Fire-and-forget, at most one save in flight; the latest state is always written last
        self._creds_dirty = True
        if self._persist_task is None or self._persist_task.done():
            self._persist_task = asyncio.create_task(self._persist_loop())

    async def _persist_loop(self):
        while self._creds_dirty:
            self._creds_dirty = False
            snapshot = copy.deepcopy(self._credentials)
            try:
                await self._store.save(snapshot)
            except Exception as e:
                message = f"Failed to persist credentials: {describe_error(e)}"
                logger.error(message)
                self._writer.emit(ErrorEvent(message=message))

    async def flush_credentials(self):
        """Wait until every pending credential save has finished."""
        while self._persist_task and not self._persist_task.done():
            await asyncio.shield(self._persist_task)

    async def aclose(self):
        """Release the current handle and finish pending saves."""
        if self._client is not None:
            await self._release(self._client)
        await self.flush_credentials()
