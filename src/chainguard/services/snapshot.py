"""Firewall snapshots.

Before chainguard changes anything it saves the complete current filter
state (iptables-save output) to a new file in the backup directory:

    /var/lib/chainguard/backups/iptables_20240131_120000.bak

Snapshots are write-once and never pruned. Restore manually with
``iptables-restore < FILE``.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from chainguard.core.exceptions import BackupError, ChainGuardError
from chainguard.core.output import Console
from chainguard.services.engine import FilterEngine


SNAPSHOT_PREFIX = "iptables_"
SNAPSHOT_SUFFIX = ".bak"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Runs within the same second get _1, _2, ... appended
MAX_NAME_ATTEMPTS = 100


class SnapshotManager:
    """Writes and lists timestamped filter-state snapshots."""

    def __init__(
        self,
        engine: FilterEngine,
        backup_dir: Path,
        console: Console,
        *,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize snapshot manager.

        Args:
            engine: Engine whose state is dumped
            backup_dir: Directory for snapshot files (created on demand)
            console: Console for output
            dry_run: Show the snapshot path without writing
            clock: Time source for file names
        """
        self.engine = engine
        self.backup_dir = backup_dir
        self.console = console
        self.dry_run = dry_run
        self.clock = clock

    def _candidate_paths(self, stamp: str) -> Iterator[Path]:
        yield self.backup_dir / f"{SNAPSHOT_PREFIX}{stamp}{SNAPSHOT_SUFFIX}"
        for n in range(1, MAX_NAME_ATTEMPTS):
            yield self.backup_dir / f"{SNAPSHOT_PREFIX}{stamp}_{n}{SNAPSHOT_SUFFIX}"

    def take(self, reason: str = "") -> Path:
        """Save the current filter state to a new snapshot file.

        Args:
            reason: Operation the snapshot precedes (for messages)

        Returns:
            Path of the written snapshot

        Raises:
            BackupError: If the directory, the dump or the write fails
        """
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        label = f" before {reason}" if reason else ""

        if self.dry_run:
            path = next(self._candidate_paths(stamp))
            self.console.dry_run_msg(f"Save firewall snapshot{label} to {path}")
            return path

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError(
                f"Cannot create backup directory: {self.backup_dir}",
                hint="Check permissions or set backup_dir in the configuration",
                details=[str(e)],
            ) from e

        try:
            content = self.engine.dump()
        except ChainGuardError as e:
            raise BackupError(
                "Backup failed: cannot read current firewall state",
                details=[e.message] + e.details,
            ) from e

        for path in self._candidate_paths(stamp):
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(content)
            except FileExistsError:
                continue
            except OSError as e:
                path.unlink(missing_ok=True)
                raise BackupError(
                    f"Backup failed: cannot write {path}",
                    details=[str(e)],
                ) from e

            self.console.info(f"Rules backed up to: {path}")
            return path

        raise BackupError(
            f"Backup failed: no free snapshot name for {stamp} in {self.backup_dir}",
        )

    def list_snapshots(self) -> list[Path]:
        """List snapshot files, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        return sorted(
            p for p in self.backup_dir.glob(f"{SNAPSHOT_PREFIX}*{SNAPSHOT_SUFFIX}")
            if p.is_file()
        )

    def latest(self) -> Path | None:
        """Most recent snapshot, if any."""
        snapshots = self.list_snapshots()
        return snapshots[-1] if snapshots else None
