"""Pairing-code side channel: show the code to whoever watches stderr."""

import logging
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

logger = logging.getLogger("wabridge.pairing")


class PairingDisplay:
    """Best-effort terminal display of pairing codes.

    The host also receives every code as a `qr` event; this is only a
    convenience for an operator watching the bridge's stderr. Failures are
    logged and otherwise ignored.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def display(self, data: str):
        try:
            self.console.print(
                Panel(
                    Text(data),
                    title="[bold]Pairing code[/bold]",
                    subtitle="Linked devices → Link a device",
                    border_style="cyan",
                )
            )
        except Exception as e:
            logger.debug(f"Pairing code display failed: {e}")
