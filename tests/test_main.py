"""End-to-end tests for the bridge runner with a scripted client."""

import asyncio
import io

import pytest

from conftest import read_events
from wabridge.client.base import (
    CONNECTION_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    InboundBatch,
    MessagingClient,
)
from wabridge.config import BridgeSettings
from wabridge.lifecycle import EXIT_FAILURE
from wabridge.main import main, run


class ScriptedClient(MessagingClient):
    """Opens, delivers one live message, then reports a logout."""

    name = "scripted"

    def __init__(self, settings):
        super().__init__()
        self._task = None

    async def connect(self, credentials):
        self._task = asyncio.create_task(self._script())

    async def _script(self):
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))
        await self._emit(MESSAGES_UPSERT, InboundBatch(kind="notify", messages=[{
            "key": {"remoteJid": "1@s", "id": "M1", "fromMe": False},
            "pushName": "Ana",
            "message": {"extendedTextMessage": {"text": "hello"}},
        }]))
        await self._emit(CONNECTION_UPDATE, ConnectionUpdate(connection="close", reason=DisconnectReason.LOGGED_OUT))

    async def send_text(self, jid, text):
        pass

    async def close(self):
        pass


def _settings(tmp_path, client=f"{__name__}:ScriptedClient"):
    return BridgeSettings(auth_dir=str(tmp_path / "auth"), client=client, print_qr=False)


def _closed_reader() -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_eof()
    return reader


class TestRun:
    @pytest.mark.asyncio
    async def test_session_until_logout(self, tmp_path):
        output = io.BytesIO()
        code = await asyncio.wait_for(run(_settings(tmp_path), reader=_closed_reader(), output=output), timeout=5.0)

        assert code == EXIT_FAILURE
        assert read_events(output) == [
            {"type": "connected"},
            {"type": "message", "jid": "1@s", "text": "hello", "pushName": "Ana", "messageId": "M1", "fromMe": False},
            {"type": "disconnected", "reason": "logged_out"},
        ]

    @pytest.mark.asyncio
    async def test_bad_client_path(self, tmp_path):
        output = io.BytesIO()
        code = await run(_settings(tmp_path, client="wabridge_missing_module:Client"), reader=_closed_reader(), output=output)

        assert code == EXIT_FAILURE
        events = read_events(output)
        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["message"].startswith("Startup failed: Cannot import client module")

    @pytest.mark.asyncio
    async def test_corrupt_credentials(self, tmp_path):
        auth = tmp_path / "auth"
        auth.mkdir()
        (auth / "creds.json").write_text("{", encoding="utf-8")
        output = io.BytesIO()
        code = await run(_settings(tmp_path), reader=_closed_reader(), output=output)

        assert code == EXIT_FAILURE
        events = read_events(output)
        assert [e["type"] for e in events] == ["error"]
        assert events[0]["message"].startswith("Failed to load credentials: Corrupt credential file")


class TestMain:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("WABRIDGE_LOG_LEVEL", raising=False)
        monkeypatch.delenv("WABRIDGE_LOG_FILE", raising=False)

    def _single_error(self, capsysbinary) -> str:
        events = read_events(io.BytesIO(capsysbinary.readouterr().out))
        assert len(events) == 1
        assert events[0]["type"] == "error"
        return events[0]["message"]

    def test_unknown_log_level(self, monkeypatch, capsysbinary):
        monkeypatch.setenv("WABRIDGE_LOG_LEVEL", "verbose")
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_FAILURE
        assert self._single_error(capsysbinary).startswith("Invalid configuration: log_level:")

    def test_unwritable_log_file(self, tmp_path, capsysbinary):
        with pytest.raises(SystemExit) as exc_info:
            main(log_file=str(tmp_path / "missing" / "bridge.log"))
        assert exc_info.value.code == EXIT_FAILURE
        assert self._single_error(capsysbinary).startswith("Invalid configuration:")
