"""Command execution.

Provides:
- Safe command execution with output capture
- Dry-run mode support for mutating commands
- Uniform error reporting for failed or missing executables
"""

import shlex
import subprocess
from dataclasses import dataclass

from chainguard.core.context import ExecutionContext
from chainguard.core.exceptions import ExecutionError, PrerequisiteError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows mutating commands instead of running them
    - Read-only commands always run, so queries see real state
    - Output capture for processing
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        check: bool = True,
        mutating: bool = True,
    ) -> CommandResult:
        """Execute a command safely.

        Args:
            command: Command as list of strings
            check: Raise exception on non-zero exit
            mutating: Command changes system state (skipped in dry-run)

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
            PrerequisiteError: If the executable does not exist
        """
        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if mutating and self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise PrerequisiteError(
                f"Command not found: {command[0]}",
                hint="Install iptables or set CHAINGUARD_IPTABLES to its path",
            ) from e

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr.strip() or None,
            )

        return cmd_result
