"""Firewall status reporting (read-only)."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from chainguard.core.config import FirewallConfig
from chainguard.core.output import Console
from chainguard.services.engine import INPUT_HOOK, Action, FilterEngine, Rule
from chainguard.services.snapshot import SnapshotManager


BLOCKING_TARGETS = frozenset({Action.DROP.value, Action.REJECT.value})


@dataclass
class StatusReport:
    """Point-in-time view of the managed chain."""
    chain: str
    mode: str
    ports: str
    chain_exists: bool
    rules: list[Rule] = field(default_factory=list)
    hooks: dict[str, int] = field(default_factory=dict)
    snapshot_count: int = 0
    latest_snapshot: Optional[Path] = None
    log_file: Optional[Path] = None

    @property
    def rule_count(self) -> int:
        return len(self.rules)

    @property
    def entry_count(self) -> int:
        return sum(1 for rule in self.rules if rule.source)

    @property
    def blocked_count(self) -> int:
        return sum(
            1 for rule in self.rules
            if rule.source and rule.target in BLOCKING_TARGETS
        )

    @property
    def active(self) -> bool:
        return self.chain_exists

    @property
    def hooked(self) -> bool:
        return any(self.hooks.values())


class StatusReporter:
    """Collects and displays the chain status."""

    def __init__(
        self,
        engine: FilterEngine,
        config: FirewallConfig,
        snapshots: SnapshotManager,
        console: Console,
    ) -> None:
        self.engine = engine
        self.config = config
        self.snapshots = snapshots
        self.console = console

    def report(self) -> StatusReport:
        """Gather the current status. Never mutates, never fails on absence."""
        chain = self.config.chain
        exists = self.engine.chain_exists(chain)

        refs = self.engine.list_hook_references(INPUT_HOOK, chain) if exists else []
        snapshots = self.snapshots.list_snapshots()

        return StatusReport(
            chain=chain,
            mode=self.config.mode.value,
            ports=self.config.ports,
            chain_exists=exists,
            rules=self.engine.list_rules(chain) if exists else [],
            hooks={
                proto: sum(1 for ref in refs if ref.protocol == proto)
                for proto in self.config.protocols
            },
            snapshot_count=len(snapshots),
            latest_snapshot=snapshots[-1] if snapshots else None,
            log_file=self.config.log_file,
        )

    def display(self, report: StatusReport) -> None:
        """Print a report as a summary panel and a rule table."""
        if not report.active:
            self.console.summary(
                f"Firewall Status: {report.chain}",
                {
                    "Status": "[yellow]not active[/yellow]",
                    "Snapshots": report.snapshot_count,
                    "Log file": report.log_file,
                },
            )
            return

        hooks = ", ".join(
            f"{proto}={count}" for proto, count in report.hooks.items()
        ) or "none"
        label = "Blocked IPs" if report.mode == "blacklist" else "Allowed IPs"
        count = report.blocked_count if report.mode == "blacklist" else report.entry_count

        self.console.summary(
            f"Firewall Status: {report.chain}",
            {
                "Status": "[green]active[/green]",
                "Mode": report.mode,
                "Ports": report.ports,
                "Hooked": report.hooked,
                "Hooks": hooks,
                "Rules": report.rule_count,
                label: count,
                "Snapshots": report.snapshot_count,
                "Latest snapshot": report.latest_snapshot or "none",
                "Log file": report.log_file,
            },
        )

        if report.rules and self.console.verbosity > 0:
            rows = [
                [str(i), rule.target, rule.source or ("local" if rule.is_local else "any")]
                for i, rule in enumerate(report.rules, start=1)
            ]
            self.console.table(f"Chain {report.chain}", ["#", "Target", "Source"], rows)
