"""WhatsApp adapter backed by the `wacli` binary.

`wacli sync --follow` keeps the WebSocket session alive and writes every
message it sees into a local SQLite store. This adapter:

- treats the sync process as the connection: it counts as open once it
  has survived a short grace period, and its exit is the close;
- polls the store for new rows and reports them as inbound batches. At the
  open event the store is drained once as history sync ("append"); every
  row polled after that is live ("notify"). Messages that arrive during the
  grace period are therefore treated as history and not surfaced;
- sends with `wacli send text`. The sync process holds an exclusive lock
  on the store, so it is paused for the duration of each send.

Requires: wacli installed and authenticated (`wacli auth`, QR scan).
Pairing happens out of band, so this adapter never reports a pairing code
or credential updates; an unauthenticated store shows up as logged out.
"""

import asyncio
import collections
import logging
import os
import shutil
import sqlite3
from typing import Any, Mapping, Optional

from ..config import BridgeSettings
from ..errors import ClientError, NotConnectedError, SendError
from .base import (
    BATCH_APPEND,
    BATCH_NOTIFY,
    CONNECTION_UPDATE,
    MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    InboundBatch,
    MessagingClient,
)

logger = logging.getLogger("wabridge.wacli")

# stderr fragments that mean the session itself is gone
_LOGGED_OUT_MARKERS = (
    "logged out",
    "not logged in",
    "not authenticated",
    "unauthorized",
    "401",
    "wacli auth",
)
_REPLACED_MARKERS = ("replaced", "conflict")
_STDERR_TAIL = 20

_POLL_QUERY = """
    SELECT rowid, chat_jid, sender_jid, sender_name, chat_name, text,
           from_me, media_type, mime_type, media_caption, msg_id
    FROM messages
    WHERE rowid > ?
      AND chat_jid != 'status@broadcast'
    ORDER BY rowid ASC
"""


def classify_exit(returncode: Optional[int], stderr: str) -> DisconnectReason:
    """Map a sync process exit to a disconnect reason."""
    text = (stderr or "").lower()
    if any(marker in text for marker in _LOGGED_OUT_MARKERS):
        return DisconnectReason.LOGGED_OUT
    if any(marker in text for marker in _REPLACED_MARKERS):
        return DisconnectReason.CONNECTION_REPLACED
    if returncode == 0:
        return DisconnectReason.CONNECTION_CLOSED
    return DisconnectReason.CONNECTION_LOST


def row_to_message(row: Mapping[str, Any]) -> dict:
    """Convert a wacli store row to the service's raw message shape."""
    text = row.get("text") or ""
    media_type = row.get("media_type")
    content: dict = {}
    if text:
        content["conversation"] = text
    elif media_type:
        content[f"{media_type}Message"] = {
            "caption": row.get("media_caption") or "",
            "mimetype": row.get("mime_type") or "",
        }
    return {
        "key": {
            "remoteJid": row.get("chat_jid") or "",
            "id": row.get("msg_id") or "",
            "fromMe": bool(row.get("from_me")),
            "participant": row.get("sender_jid") or None,
        },
        "pushName": row.get("sender_name") or "",
        "message": content or None,
    }


class WacliClient(MessagingClient):
    """One connection attempt through `wacli sync --follow`."""

    name = "wacli"

    def __init__(self, settings: BridgeSettings):
        super().__init__()
        self._wacli_path = settings.wacli_path
        self._db_path = os.path.join(os.path.expanduser(settings.wacli_store), "wacli.db")
        self._poll_interval = settings.poll_interval
        self._open_grace = settings.open_grace
        self._send_timeout = settings.send_timeout

        self._process: Optional[asyncio.subprocess.Process] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=_STDERR_TAIL)
        self._send_lock = asyncio.Lock()
        self._notify_lock = asyncio.Lock()
        self._poll_lock = asyncio.Lock()
        self._last_rowid = 0
        self._opened = False
        self._closing = False
        self._finished = False

    # ── Binary / store ──────────────────────────────────────

    def _resolve_wacli(self) -> Optional[str]:
        found = shutil.which(self._wacli_path)
        if found:
            return found
        path = os.path.expanduser(self._wacli_path)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
        return None

    def _max_rowid(self) -> int:
        if not os.path.isfile(self._db_path):
            return 0
        conn = sqlite3.connect(self._db_path, timeout=5)
        try:
            cur = conn.execute("SELECT MAX(rowid) FROM messages")
            return cur.fetchone()[0] or 0
        finally:
            conn.close()

    def _fetch_rows(self, after_rowid: int) -> list[dict]:
        if not os.path.isfile(self._db_path):
            return []
        conn = sqlite3.connect(self._db_path, timeout=5)
        conn.row_factory = sqlite3.Row
        try:
            cur = conn.execute(_POLL_QUERY, (after_rowid,))
            return [dict(row) for row in cur.fetchall()]
        finally:
            conn.close()

    # ── MessagingClient interface ───────────────────────────

    async def connect(self, credentials: Optional[dict]) -> None:
        if credentials:
            logger.debug("wacli keeps its own session store; ignoring bridge credentials.")

        resolved = self._resolve_wacli()
        if not resolved:
            raise ClientError(
                f"wacli binary not found ({self._wacli_path}). "
                "Install: go install github.com/steipete/wacli@latest"
            )
        self._wacli_path = resolved

        try:
            self._last_rowid = await asyncio.to_thread(self._max_rowid)
        except sqlite3.Error as e:
            logger.warning(f"Cannot read wacli store {self._db_path}: {e}")
            self._last_rowid = 0

        await self._notify(CONNECTION_UPDATE, ConnectionUpdate(connection="connecting"))
        await self._start_sync()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"wacli sync started (last_rowid={self._last_rowid}, db={self._db_path})")

    async def send_text(self, jid: str, text: str) -> None:
        async with self._send_lock:
            if self._finished or self._closing:
                raise NotConnectedError("wacli connection is closed")

            was_syncing = self._process is not None
            if was_syncing:
                await self._stop_sync()

            try:
                await self._wacli_send_text(jid, text)
            finally:
                if was_syncing and not (self._closing or self._finished):
                    await self._resume_sync()

    async def close(self) -> None:
        self._closing = True
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        await self._stop_sync()
        self._finished = True
        self.remove_all_listeners()

    # ── Sync process ────────────────────────────────────────

    async def _start_sync(self):
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._wacli_path, "sync", "--follow",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._process = None
            raise ClientError(f"Failed to start wacli sync: {e}") from e

        self._stderr_tail.clear()
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))
        self._monitor_task = asyncio.create_task(self._monitor_loop(self._process))

    async def _resume_sync(self):
        try:
            await self._start_sync()
        except ClientError as e:
            logger.error(f"Failed to resume wacli sync after send: {e}")
            await self._report_close(DisconnectReason.CONNECTION_LOST, str(e))

    async def _stop_sync(self):
        """Stop the sync process without reporting a close."""
        # Stop monitor first so the exit is not reported
        if self._monitor_task and not self._monitor_task.done():
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        self._monitor_task = None

        if self._process:
            if self._process.returncode is None:
                try:
                    self._process.terminate()
                    await asyncio.wait_for(self._process.wait(), timeout=5)
                except asyncio.TimeoutError:
                    try:
                        self._process.kill()
                    except ProcessLookupError:
                        pass
                    await self._process.wait()
                except ProcessLookupError:
                    pass
            self._process = None

        if self._stderr_task:
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

    async def _read_stderr(self, process: asyncio.subprocess.Process):
        if process.stderr is None:
            return
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"[wacli] {text}")

    async def _monitor_loop(self, process: asyncio.subprocess.Process):
        """Report open after the grace period, then close when the process ends."""
        if not self._opened:
            try:
                await asyncio.wait_for(process.wait(), timeout=self._open_grace)
            except asyncio.TimeoutError:
                # Everything stored before the open event goes out as history
                async with self._poll_lock:
                    await self._poll_once()
                    self._opened = True
                    logger.info("wacli sync is up; connection open.")
                    await self._notify(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

        returncode = await process.wait()
        if self._stderr_task:
            await self._stderr_task
        if self._closing:
            return

        stderr = "\n".join(self._stderr_tail)
        reason = classify_exit(returncode, stderr)
        logger.warning(f"wacli sync exited (rc={returncode}, reason={reason.value}): {stderr[-200:]}")
        await self._report_close(reason, stderr[-500:] or f"exit code {returncode}")

    async def _report_close(self, reason: DisconnectReason, error: str):
        if self._finished:
            return
        await self._notify(
            CONNECTION_UPDATE,
            ConnectionUpdate(connection="close", reason=reason, error=error),
        )
        self._finished = True

    # ── Outbound ────────────────────────────────────────────

    async def _wacli_send_text(self, jid: str, text: str):
        """Low-level: send one text. Caller must hold _send_lock."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self._wacli_path, "send", "text",
                "--to", jid,
                "--message", text,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SendError(f"Failed to run wacli send: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise SendError(f"wacli send text timed out after {self._send_timeout:g}s")

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise SendError(f"wacli send text failed (rc={proc.returncode}): {err[:200]}")
        logger.info(f"[wacli] sent text to {jid}")

    # ── Inbound poller ──────────────────────────────────────

    async def _poll_loop(self):
        """Poll the wacli store for new rows and report them in rowid order."""
        while not self._finished and not self._closing:
            await asyncio.sleep(self._poll_interval)
            async with self._poll_lock:
                await self._poll_once()

    async def _poll_once(self):
        """Report rows past `_last_rowid`: "notify" once open, "append" before.

        Caller must hold _poll_lock.
        """
        try:
            rows = await asyncio.to_thread(self._fetch_rows, self._last_rowid)
        except sqlite3.Error as e:
            logger.warning(f"wacli store poll failed: {e}")
            return
        if not rows:
            return

        self._last_rowid = rows[-1]["rowid"]
        kind = BATCH_NOTIFY if self._opened else BATCH_APPEND
        logger.debug(f"[wacli] poll: {len(rows)} new row(s), kind={kind}")
        batch = InboundBatch(kind=kind, messages=[row_to_message(r) for r in rows])
        await self._notify(MESSAGES_UPSERT, batch)

    async def _notify(self, event: str, payload: Any):
        # Monitor and poller run as separate tasks; deliver one at a time
        async with self._notify_lock:
            if self._finished:
                return
            await self._emit(event, payload)
