"""Start command."""

import click

from . import cli
from .shared import err_console


@cli.command()
@click.option("--auth-dir", type=click.Path(file_okay=False), help="Credential directory (overrides BAILEYS_AUTH_DIR)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--suppress-own", is_flag=True, help="Drop own-origin messages instead of surfacing them with fromMe=true")
@click.option("--no-qr", is_flag=True, help="Do not print pairing codes to stderr")
def start(auth_dir, debug, suppress_own, no_qr):
    """Run the bridge: events on stdout, commands on stdin (one JSON object per line)."""
    from wabridge.main import main as run_bridge

    err_console.print("[bold blue]Starting wabridge...[/bold blue]")
    run_bridge(
        auth_dir=auth_dir,
        log_level="DEBUG" if debug else None,
        include_own_messages=False if suppress_own else None,
        print_qr=False if no_qr else None,
    )
