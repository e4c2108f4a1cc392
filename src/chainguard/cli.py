"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
Commands are registered from submodules.
"""

from typing import Annotated

import typer
from rich.console import Console

from chainguard import __version__
from chainguard.commands import firewall
from chainguard.commands.config import app as config_app


# Create the main Typer app
app = typer.Typer(
    name="chainguard",
    help="chainguard - iptables allow/deny list manager.",
    invoke_without_command=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

# Register chain lifecycle commands (start/stop are aliases)
app.command("apply")(firewall.apply_rules)
app.command("start")(firewall.apply_rules)
app.command("clean")(firewall.clean_rules)
app.command("stop")(firewall.clean_rules)
app.command("reload")(firewall.reload_rules)
app.command("backup")(firewall.backup)
app.command("status")(firewall.status)

# Register command groups
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"chainguard version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """chainguard - iptables allow/deny list manager.

    Maintains one dedicated chain built from an IP list and hooks it into
    INPUT for the configured ports. Every change is preceded by an
    iptables-save snapshot.

    [bold]Modes:[/bold]
    - whitelist: listed IPs allowed, everything else rejected
    - blacklist: listed IPs dropped, everything else passes

    [bold]Examples:[/bold]
        sudo chainguard apply
        sudo chainguard reload
        sudo chainguard status
        sudo chainguard clean
        chainguard config init
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show this help message."""
    typer.echo(ctx.parent.get_help() if ctx.parent else ctx.get_help())


if __name__ == "__main__":
    app()
