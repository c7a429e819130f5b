"""Shared utilities for wabridge CLI commands."""

from rich.console import Console

from wabridge.config import BridgeSettings, load_settings
from wabridge.credentials import FileCredentialStore

console = Console()

# `start` owns stdout for IPC; anything it prints goes here
err_console = Console(stderr=True)


def _get_store(auth_dir: str | None = None) -> tuple[BridgeSettings, FileCredentialStore]:
    """Load settings and the credential store they point at."""
    settings = load_settings(auth_dir=auth_dir)
    return settings, FileCredentialStore(settings.auth_dir)
