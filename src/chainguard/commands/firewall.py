"""Firewall chain commands.

Provides the chain lifecycle:
- apply/start: build the chain from the IP list and hook it into INPUT
- clean/stop: unhook and remove the chain
- reload: repopulate the chain in place
- backup: take or list snapshots
- status: show the chain, its hooks and snapshots
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer

from chainguard.core import (
    ChainGuardError,
    CommandExecutor,
    ExecutionContext,
    RunLog,
    console,
    create_context,
)
from chainguard.core.config import DEFAULT_CONFIG_PATH
from chainguard.services.iplist import load_ip_list
from chainguard.services.iptables import IptablesEngine
from chainguard.services.reconciler import Reconciler, ReconcileResult
from chainguard.services.snapshot import SnapshotManager
from chainguard.services.status import StatusReporter


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts. Overwrites an existing chain.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

IPFileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--ip-file",
        help="IP list file (overrides ip_file from the configuration).",
        dir_okay=False,
    ),
]


def _get_services(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    ip_file: Optional[Path] = None,
) -> tuple[ExecutionContext, Reconciler, StatusReporter]:
    """Create context, reconciler and status reporter.

    Raises:
        ConfigurationError: If the configuration file is invalid
    """
    ctx = create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    app_config = ctx.config
    firewall = app_config.firewall
    if ip_file is not None:
        firewall = firewall.model_copy(update={"ip_file": ip_file})

    ctx.console.attach_log(RunLog(firewall.log_file))

    executor = CommandExecutor(ctx)
    engine = IptablesEngine(
        ctx,
        executor,
        iptables_bin=app_config.settings.iptables_bin,
        iptables_save_bin=app_config.settings.iptables_save_bin,
    )
    snapshots = SnapshotManager(engine, firewall.backup_dir, ctx.console, dry_run=ctx.dry_run)
    reconciler = Reconciler(
        engine,
        firewall,
        snapshots,
        ctx.console,
        confirm=lambda question: ctx.console.confirm(question, skip_confirm=ctx.yes),
        dry_run=ctx.dry_run,
    )
    reporter = StatusReporter(engine, firewall, snapshots, ctx.console)

    return ctx, reconciler, reporter


def _check_root(ctx: ExecutionContext) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with: sudo chainguard ...")
        raise typer.Exit(6)


def _handle_error(error: ChainGuardError) -> None:
    """Handle a ChainGuardError by printing formatted error and exiting."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def _show_result(ctx: ExecutionContext, operation: str, result: ReconcileResult) -> None:
    details = {
        "Rules written": result.rules_written,
        "Hooks inserted": result.hooks_inserted,
        "Hooks removed": result.hooks_removed,
        "Snapshot": result.snapshot or "none",
    }
    if result.skipped_entries:
        details["Skipped entries"] = len(result.skipped_entries)
    if ctx.dry_run:
        details["Mode"] = "dry-run (no changes made)"
    ctx.console.operation_summary(operation, True, details)


def _show_status(ctx: ExecutionContext, reporter: StatusReporter) -> None:
    ctx.console.print()
    reporter.display(reporter.report())


# =============================================================================
# Apply / Start
# =============================================================================

def apply_rules(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
    ip_file: IPFileOption = None,
) -> None:
    """Build the chain from the IP list and hook it into INPUT.

    If the chain already exists you are asked before it is removed and
    rebuilt (--yes skips the question). A snapshot of the current rules is
    saved first.

    [bold]Examples:[/bold]

        sudo chainguard apply
        sudo chainguard apply --yes --ip-file /etc/chainguard/office.txt
        chainguard apply --dry-run
    """
    try:
        ctx, reconciler, reporter = _get_services(
            dry_run=dry_run,
            yes=yes,
            verbose=verbose,
            quiet=quiet,
            no_color=no_color,
            config=config,
            ip_file=ip_file,
        )
        _check_root(ctx)

        ctx.console.step(
            f"Applying {reconciler.config.mode.value} chain {reconciler.chain} "
            f"(ports {reconciler.config.ports})"
        )
        ip_list = load_ip_list(reconciler.config.ip_file, ctx.console)
        result = reconciler.apply(ip_list.entries, overwrite=yes)

        if result.aborted:
            ctx.console.info("Operation cancelled")
            raise typer.Exit(0)

        _show_result(ctx, "Apply", result)
        _show_status(ctx, reporter)

    except ChainGuardError as e:
        _handle_error(e)


# =============================================================================
# Clean / Stop
# =============================================================================

def clean_rules(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Unhook the chain from INPUT and delete it.

    Safe to run when the chain does not exist.

    [bold]Examples:[/bold]

        sudo chainguard clean
        chainguard stop --dry-run
    """
    try:
        ctx, reconciler, reporter = _get_services(
            dry_run=dry_run,
            verbose=verbose,
            quiet=quiet,
            no_color=no_color,
            config=config,
        )
        _check_root(ctx)

        ctx.console.step(f"Removing chain {reconciler.chain}")
        result = reconciler.clean()

        _show_result(ctx, "Clean", result)
        _show_status(ctx, reporter)

    except ChainGuardError as e:
        _handle_error(e)


# =============================================================================
# Reload
# =============================================================================

def reload_rules(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
    ip_file: IPFileOption = None,
) -> None:
    """Re-read the IP list and repopulate the chain in place.

    Hooks are left alone unless missing or duplicated.

    [bold]Examples:[/bold]

        sudo chainguard reload
    """
    try:
        ctx, reconciler, reporter = _get_services(
            dry_run=dry_run,
            verbose=verbose,
            quiet=quiet,
            no_color=no_color,
            config=config,
            ip_file=ip_file,
        )
        _check_root(ctx)

        ip_list = load_ip_list(reconciler.config.ip_file, ctx.console)
        result = reconciler.reload(ip_list.entries)

        _show_result(ctx, "Reload", result)
        _show_status(ctx, reporter)

    except ChainGuardError as e:
        _handle_error(e)


# =============================================================================
# Backup
# =============================================================================

def backup(
    list_only: Annotated[
        bool,
        typer.Option("--list", "-l", help="List existing snapshots instead of taking one"),
    ] = False,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Save a snapshot of the current filter rules.

    Snapshots are iptables-save files and are never deleted by chainguard.
    Restore one with: iptables-restore < FILE

    [bold]Examples:[/bold]

        sudo chainguard backup
        chainguard backup --list
    """
    try:
        ctx, reconciler, _ = _get_services(
            dry_run=dry_run,
            verbose=verbose,
            quiet=quiet,
            no_color=no_color,
            config=config,
        )
        snapshots = reconciler.snapshots

        if list_only:
            files = snapshots.list_snapshots()
            if not files:
                ctx.console.info(f"No snapshots in {snapshots.backup_dir}")
                return
            rows = [
                [str(i), path.name, str(path.stat().st_size)]
                for i, path in enumerate(files, start=1)
            ]
            ctx.console.table(f"Snapshots in {snapshots.backup_dir}", ["#", "File", "Bytes"], rows)
            return

        _check_root(ctx)
        path = snapshots.take("manual backup")
        if not ctx.dry_run:
            ctx.console.success(f"Snapshot saved: {path}")
        ctx.console.hint(f"Restore with: iptables-restore < {path}")

    except ChainGuardError as e:
        _handle_error(e)


# =============================================================================
# Status
# =============================================================================

def status(
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Show the chain, its INPUT hooks and the latest snapshot.

    [bold]Examples:[/bold]

        sudo chainguard status
        sudo chainguard status -v
    """
    try:
        ctx, _, reporter = _get_services(
            verbose=verbose,
            no_color=no_color,
            config=config,
        )
        _show_status(ctx, reporter)

    except ChainGuardError as e:
        _handle_error(e)
