"""Configuration management using Pydantic.

Provides:
- A frozen, typed firewall configuration with validation
- YAML file loading with defaults
- Environment variable overrides for runtime settings
- Configuration initialization and display
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from chainguard.core.exceptions import ConfigurationError, ValidationError
from chainguard.core.validation import validate_chain_name, validate_port_spec


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/chainguard/config.yaml")
DEFAULT_IP_FILE = Path("/etc/chainguard/ip.txt")
DEFAULT_BACKUP_DIR = Path("/var/lib/chainguard/backups")
DEFAULT_LOG_FILE = Path("/var/log/chainguard/firewall.log")

DEFAULT_CHAIN = "CUSTOM_FIREWALL"
DEFAULT_PORTS = "9200,9201,5900:5950"
DEFAULT_PROTOCOLS = ("tcp", "udp")


class FilterMode(str, Enum):
    """How the IP list is interpreted."""
    WHITELIST = "whitelist"  # listed sources allowed, everything else rejected
    BLACKLIST = "blacklist"  # listed sources dropped, everything else passes


class FirewallConfig(BaseModel):
    """Root configuration model.

    Loaded once from /etc/chainguard/config.yaml and never mutated; every
    service receives the same instance.
    """

    model_config = ConfigDict(frozen=True)

    chain: str = DEFAULT_CHAIN
    mode: FilterMode = FilterMode.WHITELIST
    protocols: tuple[str, ...] = DEFAULT_PROTOCOLS
    ports: str = DEFAULT_PORTS

    ip_file: Path = DEFAULT_IP_FILE
    backup_dir: Path = DEFAULT_BACKUP_DIR
    log_file: Path = DEFAULT_LOG_FILE

    @field_validator("chain")
    @classmethod
    def validate_chain(cls, v: str) -> str:
        try:
            return validate_chain_name(v)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: str) -> str:
        try:
            return validate_port_spec(v)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("protocols", mode="before")
    @classmethod
    def normalize_protocols(cls, v: object) -> object:
        # Unsupported names are kept here; they are reported and skipped
        # when the chain is hooked so one typo does not block the rest.
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple)):
            seen: list[str] = []
            for item in v:
                name = str(item).strip().lower()
                if name and name not in seen:
                    seen.append(name)
            if not seen:
                raise ValueError("At least one protocol must be configured")
            return tuple(seen)
        return v

    @classmethod
    def load(cls, path: Path) -> "FirewallConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: chainguard config init",
            )

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration in {path}",
                details=[
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "FirewallConfig":
        """Load configuration, falling back to defaults if file doesn't exist.

        Args:
            path: Path to configuration file (uses default if None)

        Returns:
            Loaded or default configuration
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json")
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


class RuntimeSettings(BaseSettings):
    """Runtime overrides loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_path: Optional[Path] = Field(None, alias="CHAINGUARD_CONFIG")
    iptables_bin: str = Field("iptables", alias="CHAINGUARD_IPTABLES")
    iptables_save_bin: str = Field("iptables-save", alias="CHAINGUARD_IPTABLES_SAVE")


class AppConfig:
    """Application configuration combining config file and runtime settings.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[FirewallConfig] = None,
        settings: Optional[RuntimeSettings] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (environment, then default, if None)
            config: Pre-loaded config (skips file loading if provided)
            settings: Pre-loaded runtime settings
        """
        self._settings = settings or RuntimeSettings()
        self.config_path = config_path or self._settings.config_path or DEFAULT_CONFIG_PATH
        self._config = config or FirewallConfig.load_or_default(self.config_path)

    @property
    def firewall(self) -> FirewallConfig:
        """Get the firewall configuration."""
        return self._config

    @property
    def settings(self) -> RuntimeSettings:
        """Get the runtime settings."""
        return self._settings

    @property
    def log_file(self) -> Path:
        """Shortcut to the run log path."""
        return self._config.log_file


def get_example_config() -> str:
    """Generate example configuration file content."""
    return f"""# chainguard configuration
# Loaded once per run; edit and re-run 'chainguard reload' to apply.

# Dedicated iptables chain (max 28 chars, not a built-in name)
chain: {DEFAULT_CHAIN}

# whitelist: listed IPs allowed, all others rejected on the ports below
# blacklist: listed IPs dropped, all others pass
mode: whitelist

# Protocols to hook (tcp, udp)
protocols:
  - tcp
  - udp

# Ports: single (80), lists (80,443), ranges (5900:5950); max 15 slots, a range uses two
ports: "{DEFAULT_PORTS}"

# One IPv4 address or CIDR per line; '#' starts a comment
ip_file: {DEFAULT_IP_FILE}

# iptables-save snapshots taken before every change (never pruned)
backup_dir: {DEFAULT_BACKUP_DIR}

# Append-only run log
log_file: {DEFAULT_LOG_FILE}
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(get_example_config(), encoding="utf-8")
        os.chmod(path, 0o644)
    except OSError as e:
        raise ConfigurationError(
            f"Cannot write configuration file: {path}",
            hint="Check permissions or run with sudo",
            details=[str(e)],
        ) from e
