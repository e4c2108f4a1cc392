"""Configuration commands."""

from typing import Annotated

import typer

from chainguard.core import ChainGuardError, create_context
from chainguard.core.config import DEFAULT_CONFIG_PATH, RuntimeSettings, init_config
from chainguard.commands.firewall import (
    ConfigOption,
    NoColorOption,
    VerboseOption,
    _handle_error,
)


app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)


@app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the effective configuration (file values over defaults) and
    the runtime overrides taken from the environment.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {app_config.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {app_config.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.firewall.to_yaml(), title="Configuration")

        ctx.console.summary("Runtime (from environment)", {
            "CHAINGUARD_IPTABLES": app_config.settings.iptables_bin,
            "CHAINGUARD_IPTABLES_SAVE": app_config.settings.iptables_save_bin,
        })

    except ChainGuardError as e:
        _handle_error(e)


@app.command("init")
def config_init(
    config: ConfigOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing file.", is_flag=True),
    ] = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    ctx = create_context(no_color=no_color, config=config)

    try:
        # Resolved without loading, the existing file may be broken
        config_path = ctx.config_path or RuntimeSettings().config_path or DEFAULT_CONFIG_PATH

        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Edit the file to customize settings, then run: chainguard apply")

    except ChainGuardError as e:
        _handle_error(e)
