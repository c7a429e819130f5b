"""Credential persistence: load and save the session's auth state.

The state is an opaque JSON object issued by the messaging service. It is
kept as `creds.json` inside the configured auth directory, written
atomically (temp file + rename) with owner-only permissions so a crash
mid-write never leaves a truncated file behind.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Optional

from .errors import CredentialStoreError

logger = logging.getLogger("wabridge.credentials")

CREDS_FILE = "creds.json"


class CredentialStore(ABC):
    """Load/save capability for opaque credential state."""

    @abstractmethod
    async def load(self) -> Optional[dict]:
        """Return stored state, or None when nothing is stored yet."""
        pass

    @abstractmethod
    async def save(self, state: dict) -> None:
        """Persist `state`, replacing whatever was stored."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Remove stored state. Returns True if something was removed."""
        pass


class FileCredentialStore(CredentialStore):
    """Credential state as a JSON file in a directory."""

    def __init__(self, directory: str):
        self.directory = os.path.abspath(os.path.expanduser(directory))
        self.path = os.path.join(self.directory, CREDS_FILE)
        self._lock = asyncio.Lock()

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    async def load(self) -> Optional[dict]:
        return await asyncio.to_thread(self._read)

    async def save(self, state: dict) -> None:
        # One writer at a time; the last save wins
        async with self._lock:
            await asyncio.to_thread(self._write, state)

    async def clear(self) -> bool:
        async with self._lock:
            return await asyncio.to_thread(self._remove)

    def _read(self) -> Optional[dict]:
        if not os.path.exists(self.path):
            logger.info(f"No stored credentials in {self.directory}; a new pairing will be requested.")
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                state = json.load(f)
        except json.JSONDecodeError as e:
            raise CredentialStoreError(f"Corrupt credential file {self.path}: {e}") from e
        except OSError as e:
            raise CredentialStoreError(f"Cannot read credential file {self.path}: {e}") from e

        if not isinstance(state, dict):
            raise CredentialStoreError(f"Credential file {self.path} does not hold a JSON object")
        logger.debug(f"Loaded credentials from {self.path}")
        return state

    def _write(self, state: dict):
        try:
            os.makedirs(self.directory, mode=0o700, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".creds-", suffix=".json", dir=self.directory)
        except OSError as e:
            raise CredentialStoreError(f"Cannot prepare credential directory {self.directory}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise CredentialStoreError(f"Cannot write credential file {self.path}: {e}") from e

    def _remove(self) -> bool:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CredentialStoreError(f"Cannot remove credential file {self.path}: {e}") from e
        logger.info(f"Removed stored credentials at {self.path}")
        return True
