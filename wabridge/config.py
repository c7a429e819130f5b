"""wabridge configuration management."""

import logging
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger("wabridge.config")


class BridgeSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Credential storage (BAILEYS_AUTH_DIR is what existing hosts export)
    auth_dir: str = Field(
        default="./auth_state",
        validation_alias=AliasChoices("BAILEYS_AUTH_DIR", "WABRIDGE_AUTH_DIR"),
        description="Directory holding persisted session credentials",
    )

    # Reconnect policy
    reconnect_delay: float = Field(default=3.0, description="Seconds to wait before reconnecting")
    max_rapid_failures: int = Field(
        default=10,
        description="Abort after this many consecutive sub-window failures (0 = never)",
    )
    rapid_failure_window: float = Field(default=1.0, description="Seconds; faster closes count as rapid")

    # Inbound
    include_own_messages: bool = Field(default=True, description="Surface own-origin messages with fromMe=true")

    # Pairing
    print_qr: bool = Field(default=True, description="Also print pairing codes to stderr")

    # Messaging client adapter
    client: str = Field(
        default="wabridge.client.wacli:WacliClient",
        description="Import path of the messaging client class (module:attr)",
    )
    wacli_path: str = Field(default="wacli", description="wacli binary name or path")
    wacli_store: str = Field(default="~/.wacli", description="wacli store directory (holds wacli.db)")
    poll_interval: float = Field(default=2.0, description="Seconds between inbound store polls")
    open_grace: float = Field(default=3.0, description="Seconds the sync process must survive to count as open")
    send_timeout: float = Field(default=30.0, description="Seconds before an outbound send is abandoned")

    # Logging: stdout is the IPC channel, logs go to stderr and optionally a file
    log_level: str = Field(default="INFO", description="Root log level for wabridge loggers")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    model_config = {"env_prefix": "WABRIDGE_", "env_file": ".env", "extra": "ignore", "populate_by_name": True}

    @field_validator("reconnect_delay", "rapid_failure_window", "poll_interval", "open_grace", "send_timeout")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("max_rapid_failures")
    @classmethod
    def _non_negative_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level


def load_settings(**overrides) -> BridgeSettings:
    """Load settings from environment, applying explicit overrides (e.g. CLI flags)."""
    overrides = {k: v for k, v in overrides.items() if v is not None}
    settings = BridgeSettings(**overrides)
    if settings.max_rapid_failures == 0:
        logger.debug("Rapid-failure cap disabled; reconnecting indefinitely.")

    return settings
