"""Tests for the exception hierarchy and error descriptions."""

import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from wabridge.errors import (
    BridgeError,
    ClientError,
    CommandError,
    CredentialStoreError,
    NotConnectedError,
    ProtocolError,
    SendError,
    describe_error,
)


class _Model(BaseModel):
    jid: str
    count: int


class TestHierarchy:
    def test_all_are_bridge_errors(self):
        for cls in (CredentialStoreError, ClientError, SendError, NotConnectedError, ProtocolError, CommandError):
            assert issubclass(cls, BridgeError)

    def test_send_errors_are_client_errors(self):
        assert issubclass(SendError, ClientError)
        assert issubclass(NotConnectedError, ClientError)

    def test_command_error_is_protocol_error(self):
        assert issubclass(CommandError, ProtocolError)


class TestDescribeError:
    def test_own_message(self):
        assert describe_error(SendError("rate limited")) == "rate limited"

    def test_whitespace_stripped(self):
        assert describe_error(RuntimeError("  boom \n")) == "boom"

    def test_type_name_fallback(self):
        assert describe_error(ConnectionResetError()) == "ConnectionResetError"

    def test_timeout(self):
        assert describe_error(asyncio.TimeoutError()) == "timed out"
        assert describe_error(TimeoutError("send took 30s")) == "send took 30s"

    def test_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            _Model.model_validate({"jid": 5})
        text = describe_error(exc_info.value)
        assert text.startswith("jid: ")
        assert "; count: Field required" in text
