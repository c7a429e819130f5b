"""Status and logout commands."""

import asyncio
import os

import click
from rich.table import Table

from . import cli
from .shared import _get_store, console


@cli.command()
@click.option("--auth-dir", type=click.Path(file_okay=False), help="Credential directory (overrides BAILEYS_AUTH_DIR)")
def status(auth_dir):
    """Show credential directory and stored session state."""
    from wabridge import __version__
    from wabridge.errors import CredentialStoreError

    settings, store = _get_store(auth_dir)

    table = Table(title=f"wabridge status v{__version__}", show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Auth dir", store.directory)
    table.add_row("Client", settings.client)
    table.add_row("Reconnect delay", f"{settings.reconnect_delay:g}s")
    table.add_row("Own messages", "surfaced (fromMe=true)" if settings.include_own_messages else "suppressed")

    if not store.exists():
        table.add_row("Session", "[yellow]none stored (pairing required)[/yellow]")
    else:
        try:
            state = asyncio.run(store.load())
            keys = ", ".join(sorted(state)) if state else "(empty)"
            table.add_row("Session", f"[green]stored[/green] ({len(state or {})} keys: {keys})")
            table.add_row("Updated", _mtime(store.path))
        except CredentialStoreError as e:
            table.add_row("Session", f"[red]unreadable: {e}[/red]")

    console.print(table)


@cli.command()
@click.option("--auth-dir", type=click.Path(file_okay=False), help="Credential directory (overrides BAILEYS_AUTH_DIR)")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def logout(auth_dir, yes):
    """Delete stored credentials; the next start requests a new pairing."""
    _, store = _get_store(auth_dir)

    if not store.exists():
        console.print(f"[dim]No stored credentials in {store.directory}.[/dim]")
        return

    if not yes:
        click.confirm(f"Delete stored credentials in {store.directory}?", abort=True)

    removed = asyncio.run(store.clear())
    if removed:
        console.print("[green]✓ Credentials removed.[/green]")
    else:
        console.print("[dim]Nothing to remove.[/dim]")


def _mtime(path: str) -> str:
    import datetime
    ts = os.path.getmtime(path)
    return datetime.datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")
