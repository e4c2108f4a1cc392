"""Chain reconciliation.

Converges the filter table on the configured desired state:

    INPUT
      -p tcp -m multiport --dports 9200,9201 -j CUSTOM_FIREWALL   (one per protocol)

    CUSTOM_FIREWALL (whitelist)          CUSTOM_FIREWALL (blacklist)
      local source      -> ACCEPT          local source      -> RETURN
      each list entry   -> ACCEPT          each list entry   -> DROP
      everything else   -> REJECT          everything else   -> RETURN

The existing state is unknown and may be partial (chain without hooks,
duplicate hooks, hooks with stale ports), so every step is written to be
safe to repeat. A snapshot is taken before the first mutation of every
entry point. Cleanup steps tolerate failures; building steps do not.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from chainguard.core.config import FilterMode, FirewallConfig
from chainguard.core.exceptions import FirewallError, ValidationError
from chainguard.core.output import Console
from chainguard.core.validation import validate_ipv4_entry, validate_protocol
from chainguard.services.engine import (
    INPUT_HOOK,
    LOCAL_SOURCE_MATCH,
    Action,
    EngineOutcome,
    FilterEngine,
    HookReference,
    Rule,
)
from chainguard.services.snapshot import SnapshotManager


# Hard ceiling on delete attempts per hook reference
HOOK_DELETE_CAP = 64

# Pause between successful hook deletes, in seconds
HOOK_DELETE_PAUSE = 0.1


class ChainState(str, Enum):
    """Observed state of the managed chain."""
    ABSENT = "absent"
    PRESENT_EMPTY = "present_empty"
    PRESENT_POPULATED = "present_populated"


@dataclass
class Observation:
    """Read-only view of the chain and its hooks."""
    chain: str
    state: ChainState
    hooks: dict[str, int] = field(default_factory=dict)

    @property
    def hooked(self) -> bool:
        return any(self.hooks.values())


@dataclass
class ReconcileResult:
    """What an apply, clean or reload actually did."""
    action: str
    snapshot: Optional[Path] = None
    aborted: bool = False
    chain_created: bool = False
    chain_removed: bool = False
    rules_written: int = 0
    hooks_inserted: int = 0
    hooks_removed: int = 0
    skipped_entries: list[str] = field(default_factory=list)


def build_chain_rules(mode: FilterMode, entries: Iterable[str]) -> list[Rule]:
    """Build the ordered rule list for the managed chain.

    Args:
        mode: Whitelist or blacklist
        entries: Validated IPv4 entries, in the order they should match

    Returns:
        Rules in evaluation order
    """
    entries = list(entries)

    if mode == FilterMode.WHITELIST:
        rules = [Rule(target=Action.ACCEPT.value, matches=LOCAL_SOURCE_MATCH)]
        rules.extend(Rule(target=Action.ACCEPT.value, source=ip) for ip in entries)
        # An empty whitelist must not lock everyone out
        if entries:
            rules.append(Rule(target=Action.REJECT.value))
        return rules

    rules = [Rule(target=Action.RETURN.value, matches=LOCAL_SOURCE_MATCH)]
    rules.extend(Rule(target=Action.DROP.value, source=ip) for ip in entries)
    rules.append(Rule(target=Action.RETURN.value))
    return rules


class Reconciler:
    """Drives a FilterEngine toward the configured chain layout.

    Example:
        reconciler = Reconciler(engine, config, snapshots, console, confirm)
        result = reconciler.apply(ip_list.entries)
    """

    def __init__(
        self,
        engine: FilterEngine,
        config: FirewallConfig,
        snapshots: SnapshotManager,
        console: Console,
        confirm: Callable[[str], bool],
        sleep: Callable[[float], None] = time.sleep,
        *,
        dry_run: bool = False,
    ) -> None:
        """Initialize reconciler.

        Args:
            engine: Filter engine to drive
            config: Firewall configuration
            snapshots: Snapshot manager (one snapshot per entry point)
            console: Console for output
            confirm: Asked before an existing chain is overwritten
            sleep: Pause function used by the hook delete loop
            dry_run: Engine mutations are simulated (bounds the delete loop
                to the observed hook count)
        """
        self.engine = engine
        self.config = config
        self.snapshots = snapshots
        self.console = console
        self.confirm = confirm
        self.sleep = sleep
        self.dry_run = dry_run

    @property
    def chain(self) -> str:
        return self.config.chain

    # =========================================================================
    # Entry points
    # =========================================================================

    def apply(self, entries: Iterable[str], *, overwrite: bool = False) -> ReconcileResult:
        """Build the chain from scratch and hook it into INPUT.

        Args:
            entries: IP list entries
            overwrite: Replace an existing chain without asking

        Returns:
            ReconcileResult (aborted if the overwrite was declined)

        Raises:
            BackupError: If the snapshot fails (nothing changed)
            FirewallError: If a building step fails (partial state left)
        """
        result = ReconcileResult(action="apply")
        refs = self.hook_references(self.resolve_protocols())
        result.snapshot = self.snapshots.take("apply")

        if self.engine.chain_exists(self.chain):
            question = f"Chain {self.chain} already exists. Remove it and rebuild?"
            if not overwrite and not self.confirm(question):
                self.console.warn(f"Existing chain {self.chain} kept, nothing changed")
                result.aborted = True
                return result

            self.console.step(f"Removing existing chain {self.chain}")
            self._clean(result)

        self._create_chain(result)
        self._write_rules(entries, result)
        for ref in refs:
            self._ensure_single_hook(ref, result)

        self.console.success(
            f"Chain {self.chain} active ({self.config.mode.value}, "
            f"{result.rules_written} rules)"
        )
        return result

    def clean(self) -> ReconcileResult:
        """Unhook and remove the chain.

        Cleaning an absent chain succeeds without changes.

        Raises:
            BackupError: If the snapshot fails (nothing changed)
        """
        result = ReconcileResult(action="clean")
        result.snapshot = self.snapshots.take("clean")
        self._clean(result)
        self.console.success(f"Chain {self.chain} removed")
        return result

    def reload(self, entries: Iterable[str]) -> ReconcileResult:
        """Repopulate the chain in place and make sure it is hooked once.

        A whitelist chain is replaced rule by rule so it never sits hooked
        and empty. A blacklist chain is flushed and repopulated.

        Raises:
            BackupError: If the snapshot fails (nothing changed)
            FirewallError: If a building step fails (partial state left)
        """
        result = ReconcileResult(action="reload")
        refs = self.hook_references(self.resolve_protocols())
        result.snapshot = self.snapshots.take("reload")

        if not self.engine.chain_exists(self.chain):
            self._create_chain(result)
            self._write_rules(entries, result)
        elif self.config.mode == FilterMode.WHITELIST:
            self._replace_rules(entries, result)
        else:
            self.console.step(f"Flushing chain {self.chain}")
            if self.engine.flush_chain(self.chain) == EngineOutcome.NOT_FOUND:
                self._create_chain(result)
            self._write_rules(entries, result)

        for ref in refs:
            self._ensure_single_hook(ref, result)

        self.console.success(f"Chain {self.chain} reloaded ({result.rules_written} rules)")
        return result

    def observe(self) -> Observation:
        """Report the chain state and per-protocol hook counts."""
        if not self.engine.chain_exists(self.chain):
            state = ChainState.ABSENT
        elif self.engine.list_rules(self.chain):
            state = ChainState.PRESENT_POPULATED
        else:
            state = ChainState.PRESENT_EMPTY

        refs = self.engine.list_hook_references(INPUT_HOOK, self.chain)
        hooks = {
            proto: sum(1 for ref in refs if ref.protocol == proto)
            for proto in self.config.protocols
        }
        return Observation(chain=self.chain, state=state, hooks=hooks)

    # =========================================================================
    # Desired state
    # =========================================================================

    def resolve_protocols(self, *, required: bool = True) -> list[str]:
        """Return configured protocols that can be hooked.

        Unsupported names are reported and skipped.

        Raises:
            FirewallError: If ``required`` and no protocol is usable
        """
        usable: list[str] = []
        for proto in self.config.protocols:
            try:
                usable.append(validate_protocol(proto))
            except ValidationError as e:
                self.console.error(e.message)

        if required and not usable:
            raise FirewallError(
                "No valid protocols configured",
                chain=self.chain,
                hint="Set protocols to tcp and/or udp in the configuration",
            )
        return usable

    def hook_references(self, protocols: Iterable[str]) -> list[HookReference]:
        return [
            HookReference(protocol=proto, ports=self.config.ports, chain=self.chain)
            for proto in protocols
        ]

    def desired_rules(self, entries: Iterable[str], result: ReconcileResult) -> list[Rule]:
        valid: list[str] = []
        for entry in entries:
            try:
                valid.append(validate_ipv4_entry(entry))
            except ValidationError as e:
                self.console.error(e.message)
                result.skipped_entries.append(entry)
        return build_chain_rules(self.config.mode, valid)

    # =========================================================================
    # Building steps (failures are fatal)
    # =========================================================================

    def _create_chain(self, result: ReconcileResult) -> None:
        self.console.step(f"Creating chain {self.chain}")
        outcome = self.engine.create_chain(self.chain)
        if outcome == EngineOutcome.UNCHANGED:
            # A delete was swallowed during cleanup; start from an empty chain
            self.console.warn(f"Chain {self.chain} still exists, flushing it")
            self.engine.flush_chain(self.chain)
        else:
            result.chain_created = True

    def _write_rules(self, entries: Iterable[str], result: ReconcileResult) -> None:
        for rule in self.desired_rules(entries, result):
            self.engine.append_rule(self.chain, rule)
            result.rules_written += 1
            self.console.debug(f"Added rule: {rule}")

        if self.config.mode == FilterMode.WHITELIST and result.rules_written == 1:
            self.console.warn("IP list is empty: no default REJECT rule added")

    def _replace_rules(self, entries: Iterable[str], result: ReconcileResult) -> None:
        """Swap the chain contents behind the live hooks.

        The new rules go in behind the old ones. The old REJECT tail is
        removed first so the new entries become reachable, then the old
        rules are deleted from the front. At every step the chain admits
        at most the union of the old and new lists.
        """
        old_rules = self.engine.list_rules(self.chain)
        self.console.step(f"Replacing {len(old_rules)} rules in chain {self.chain}")
        self._write_rules(entries, result)

        remaining = len(old_rules)
        if old_rules and old_rules[-1].target == Action.REJECT.value:
            self._delete_old_rule(remaining)
            remaining -= 1
        for _ in range(remaining):
            self._delete_old_rule(1)

    def _delete_old_rule(self, position: int) -> None:
        if self.engine.delete_rule(self.chain, position) == EngineOutcome.NOT_FOUND:
            # Positions no longer line up; deleting further could hit new rules
            raise FirewallError(
                f"Rule {position} of chain {self.chain} vanished during reload",
                chain=self.chain,
                hint="Another process changed the chain; run 'chainguard apply --yes' to rebuild it",
            )

    def _ensure_single_hook(self, ref: HookReference, result: ReconcileResult) -> None:
        if not self.engine.hook_exists(INPUT_HOOK, ref):
            self.engine.insert_hook(INPUT_HOOK, ref, position=1)
            result.hooks_inserted += 1
            self.console.info(f"Hooked {ref.protocol} ports {ref.ports} into {INPUT_HOOK}")
            return

        copies = self._count_hooks(ref)
        if copies > 1:
            self.console.warn(f"Found {copies} hooks for {ref}, removing duplicates")
            result.hooks_removed += self._delete_hook_copies(ref, copies - 1, exact=True)
        else:
            self.console.verbose(f"Hook already present: {ref}")

    # =========================================================================
    # Cleanup steps (failures are logged and tolerated)
    # =========================================================================

    def _clean(self, result: ReconcileResult) -> None:
        configured = self.hook_references(self.resolve_protocols(required=False))

        for ref in configured:
            observed = self._count_hooks(ref)
            removed = self._delete_hook_copies(ref, observed)
            result.hooks_removed += removed
            if removed:
                self.console.info(f"Removed {removed} {ref.protocol} hook(s) for {self.chain}")
            else:
                self.console.verbose(f"No {ref.protocol} hook for {self.chain}")

        # References left over from earlier port or protocol settings
        for ref in self._list_hooks():
            if ref in configured:
                continue
            self.console.warn(f"Removing stale hook {ref}")
            if self._delete_hook(ref) == EngineOutcome.APPLIED:
                result.hooks_removed += 1

        self._cleanup_step("flush", self.engine.flush_chain)
        if self._cleanup_step("delete", self.engine.delete_chain) == EngineOutcome.APPLIED:
            result.chain_removed = True

    def _cleanup_step(
        self,
        verb: str,
        operation: Callable[[str], EngineOutcome],
    ) -> Optional[EngineOutcome]:
        try:
            outcome = operation(self.chain)
        except FirewallError as e:
            self.console.warn(f"Failed to {verb} chain {self.chain}: {e.message}")
            return None

        if outcome == EngineOutcome.NOT_FOUND:
            self.console.warn(f"Chain {self.chain} not found, nothing to {verb}")
        else:
            self.console.verbose(f"Chain {self.chain}: {verb} done")
        return outcome

    def _delete_hook_copies(self, ref: HookReference, observed: int, *, exact: bool = False) -> int:
        """Delete ``ref`` until the engine reports NOT_FOUND.

        Bounded by the observed count plus one (exactly ``observed`` when
        ``exact`` or in dry-run, where deletes never take effect), capped
        at HOOK_DELETE_CAP.
        """
        limit = observed if (exact or self.dry_run) else observed + 1
        limit = min(limit, HOOK_DELETE_CAP)

        removed = 0
        for _ in range(limit):
            outcome = self._delete_hook(ref)
            if outcome != EngineOutcome.APPLIED:
                break
            removed += 1
            self.sleep(HOOK_DELETE_PAUSE)
        else:
            if not (exact or self.dry_run) and limit:
                self.console.warn(f"Hook {ref} may still be present after {limit} deletes")

        return removed

    def _delete_hook(self, ref: HookReference) -> Optional[EngineOutcome]:
        try:
            return self.engine.delete_hook(INPUT_HOOK, ref)
        except FirewallError as e:
            self.console.warn(f"Failed to remove hook {ref}: {e.message}")
            return None

    def _list_hooks(self) -> list[HookReference]:
        try:
            return self.engine.list_hook_references(INPUT_HOOK, self.chain)
        except FirewallError as e:
            self.console.warn(f"Cannot list {INPUT_HOOK} hooks: {e.message}")
            return []

    def _count_hooks(self, ref: HookReference) -> int:
        return sum(1 for existing in self._list_hooks() if existing == ref)
