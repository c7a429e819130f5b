"""Tests for the session management commands."""

import json

import pytest
from click.testing import CliRunner

from wabridge import __version__
from wabridge.cli import cli


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("BAILEYS_AUTH_DIR", raising=False)
    monkeypatch.delenv("WABRIDGE_AUTH_DIR", raising=False)
    return CliRunner()


class TestCli:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        for name in ("start", "status", "logout"):
            assert f"wabridge {name}" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert __version__ in result.output

    def test_status_without_session(self, runner, tmp_path):
        result = runner.invoke(cli, ["status", "--auth-dir", str(tmp_path / "auth")])
        assert result.exit_code == 0
        assert "Auth dir" in result.output
        assert "pairing required" in result.output

    def test_status_with_session(self, runner, tmp_path):
        auth = tmp_path / "auth"
        auth.mkdir()
        (auth / "creds.json").write_text(json.dumps({"me": "1@s", "registered": True}), encoding="utf-8")
        result = runner.invoke(cli, ["status", "--auth-dir", str(auth)])
        assert result.exit_code == 0
        assert "stored" in result.output

    def test_logout_removes_credentials(self, runner, tmp_path):
        auth = tmp_path / "auth"
        auth.mkdir()
        creds = auth / "creds.json"
        creds.write_text("{}", encoding="utf-8")

        result = runner.invoke(cli, ["logout", "--auth-dir", str(auth), "--yes"])
        assert result.exit_code == 0
        assert not creds.exists()

    def test_logout_declined(self, runner, tmp_path):
        auth = tmp_path / "auth"
        auth.mkdir()
        creds = auth / "creds.json"
        creds.write_text("{}", encoding="utf-8")

        result = runner.invoke(cli, ["logout", "--auth-dir", str(auth)], input="n\n")
        assert result.exit_code != 0
        assert creds.exists()

    def test_logout_nothing_stored(self, runner, tmp_path):
        result = runner.invoke(cli, ["logout", "--auth-dir", str(tmp_path / "empty"), "-y"])
        assert result.exit_code == 0
        assert "No stored credentials" in result.output
