"""Pytest configuration and shared fixtures."""

import asyncio
import io
import json
from typing import Optional

import pytest

from wabridge.client.base import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    InboundBatch,
    MessagingClient,
)
from wabridge.credentials import CredentialStore
from wabridge.ipc.writer import EventWriter


class FakeClient(MessagingClient):
    """In-memory client; tests push notifications through the helpers."""

    name = "fake"

    def __init__(self, connect_error: Optional[Exception] = None):
        super().__init__()
        self.connect_error = connect_error
        self.connect_credentials = None
        self.connected = False
        self.closed = False
        self.sent: list[tuple[str, str]] = []
        self.send_error: Optional[Exception] = None
        self.send_gates: dict[str, asyncio.Event] = {}

    async def connect(self, credentials):
        self.connect_credentials = credentials
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def send_text(self, jid, text):
        gate = self.send_gates.get(jid)
        if gate:
            await gate.wait()
        if self.send_error:
            raise self.send_error
        self.sent.append((jid, text))

    async def close(self):
        self.closed = True

    # ── Notification helpers ──

    async def open(self):
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def drop(self, reason: DisconnectReason = DisconnectReason.CONNECTION_LOST, error: str = ""):
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="close", reason=reason, error=error or None))

    async def pair(self, code: str):
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(qr=code))

    async def update_creds(self, update: dict):
        await self._emit(CREDS_UPDATE, update)

    async def deliver(self, kind: str, messages: list[dict]):
        await self._emit(MESSAGES_UPSERT, InboundBatch(kind=kind, messages=messages))


class FakeClientFactory:
    """Builds FakeClients and hands them to the test as they are created."""

    def __init__(self):
        self.clients: list[FakeClient] = []
        self.connect_errors: dict[int, Exception] = {}  # attempt number (1-based) → error
        self.error: Optional[Exception] = None
        self._created: asyncio.Queue = asyncio.Queue()

    def __call__(self) -> FakeClient:
        if self.error:
            raise self.error
        client = FakeClient(connect_error=self.connect_errors.get(len(self.clients) + 1))
        self.clients.append(client)
        self._created.put_nowait(client)
        return client

    async def next_client(self, timeout: float = 1.0) -> FakeClient:
        return await asyncio.wait_for(self._created.get(), timeout=timeout)


class MemoryCredentialStore(CredentialStore):
    def __init__(self, initial: Optional[dict] = None):
        self.state = initial
        self.saves: list[dict] = []
        self.load_error: Optional[Exception] = None
        self.save_error: Optional[Exception] = None

    async def load(self):
        if self.load_error:
            raise self.load_error
        return self.state

    async def save(self, state):
        if self.save_error:
            raise self.save_error
        self.saves.append(state)
        self.state = state

    async def clear(self):
        had = self.state is not None
        self.state = None
        return had


def read_events(buffer: io.BytesIO) -> list[dict]:
    """Decode every line written to a captured output stream."""
    data = buffer.getvalue().decode("utf-8")
    assert data == "" or data.endswith("\n"), "output must end with a line terminator"
    return [json.loads(line) for line in data.splitlines()]


@pytest.fixture
def output():
    return io.BytesIO()


@pytest.fixture
def writer(output):
    return EventWriter(output)


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def delays():
    return []


@pytest.fixture
def fake_sleep(delays):
    async def _sleep(seconds):
        delays.append(seconds)
    return _sleep
