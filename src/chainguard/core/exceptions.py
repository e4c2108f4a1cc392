"""Custom exceptions for chainguard.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class ChainGuardError(Exception):
    """Base exception for all chainguard errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(ChainGuardError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values (chain name, port spec, mode)
    """
    exit_code = 2


class ValidationError(ChainGuardError):
    """Input validation errors.

    Raised when:
    - Malformed IPv4 address or CIDR block
    - Unsupported protocol
    - Invalid port specification or chain name
    """
    exit_code = 3


class ExecutionError(ChainGuardError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Executable not found
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(ChainGuardError):
    """Missing prerequisites.

    Raised when:
    - iptables / iptables-save not installed
    - Insufficient permissions
    """
    exit_code = 6


class BackupError(ChainGuardError):
    """Snapshot errors.

    Raised when:
    - Backup directory cannot be created
    - iptables-save fails
    - Snapshot file cannot be written

    Always fatal: no mutation runs without a snapshot.
    """
    exit_code = 12


class FirewallError(ChainGuardError):
    """Firewall/iptables errors.

    Raised when:
    - A required iptables mutation fails
    - No usable protocol is configured
    - Chain cannot be removed while still referenced
    """
    exit_code = 15

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        chain: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.rule = rule
        self.chain = chain
