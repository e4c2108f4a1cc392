"""Core framework components for chainguard."""

from chainguard.core.exceptions import (
    ChainGuardError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    BackupError,
    FirewallError,
)

from chainguard.core.context import ExecutionContext, create_context
from chainguard.core.output import console, Console, Verbosity
from chainguard.core.config import AppConfig, FirewallConfig, FilterMode
from chainguard.core.runlog import RunLog, LogLevel
from chainguard.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "ChainGuardError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "BackupError",
    "FirewallError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "FirewallConfig",
    "FilterMode",
    # Run log
    "RunLog",
    "LogLevel",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
