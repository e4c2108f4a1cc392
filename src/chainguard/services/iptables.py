"""Iptables filter engine.

Implements the FilterEngine primitives on top of the iptables CLI with:
- The -w flag on every call, so concurrent runs wait for the xtables lock
- Interpretation of "already exists" / "does not exist" errors as outcomes
- Parsing of -S (rule-spec) output for chain and hook listings
- Dry-run mode support (mutations shown, queries still executed)
"""

import re
import shlex
from typing import Optional

from chainguard.core.context import ExecutionContext
from chainguard.core.executor import CommandExecutor, CommandResult
from chainguard.core.exceptions import FirewallError
from chainguard.services.engine import (
    EngineOutcome,
    FilterEngine,
    HookReference,
    Rule,
)


# Table every chainguard rule lives in
TABLE = "filter"

# stderr fragments meaning "there is nothing to act on"
NOT_FOUND_PATTERNS = (
    re.compile(r"No chain/target/match by that name", re.IGNORECASE),
    re.compile(r"does a matching rule exist", re.IGNORECASE),
    re.compile(r"Bad rule", re.IGNORECASE),
    re.compile(r"Couldn't load target", re.IGNORECASE),
    re.compile(r"does not exist", re.IGNORECASE),
    re.compile(r"Index of deletion too big", re.IGNORECASE),
)

# stderr fragments meaning "already there"
EXISTS_PATTERNS = (
    re.compile(r"Chain already exists", re.IGNORECASE),
    re.compile(r"File exists", re.IGNORECASE),
)


def _matches_any(patterns: tuple[re.Pattern, ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def parse_rule_spec(line: str, chain: str) -> Optional[Rule]:
    """Parse one ``iptables -S`` line into a Rule.

    Example line:
    -A CUSTOM_FIREWALL -s 10.0.0.1/32 -j ACCEPT

    Args:
        line: Output line
        chain: Chain the line must belong to

    Returns:
        Parsed rule, or None for non-rule lines (-N, -P) and other chains
    """
    try:
        tokens = shlex.split(line)
    except ValueError:
        return None

    if len(tokens) < 2 or tokens[0] != "-A" or tokens[1] != chain:
        return None

    source: Optional[str] = None
    matches: list[str] = []
    target = ""
    target_options: list[str] = []

    i = 2
    while i < len(tokens):
        token = tokens[i]
        if token == "-s" and i + 1 < len(tokens):
            source = tokens[i + 1]
            i += 2
        elif token == "-j" and i + 1 < len(tokens):
            target = tokens[i + 1]
            target_options = tokens[i + 2:]
            break
        else:
            matches.append(token)
            i += 1

    return Rule(
        target=target,
        source=source,
        matches=tuple(matches),
        target_options=tuple(target_options),
    )


def parse_hook_spec(line: str, hook: str, chain: str) -> Optional[HookReference]:
    """Parse one ``iptables -S <hook>`` line into a HookReference.

    Example line:
    -A INPUT -p tcp -m multiport --dports 80,443 -j CUSTOM_FIREWALL

    Returns:
        HookReference if the line jumps to ``chain``, otherwise None
    """
    rule = parse_rule_spec(line, hook)
    if rule is None or rule.target != chain:
        return None

    protocol = "all"
    ports = ""
    tokens = list(rule.matches)
    for i, token in enumerate(tokens[:-1]):
        if token == "-p":
            protocol = tokens[i + 1]
        elif token == "--dports":
            ports = tokens[i + 1]

    return HookReference(protocol=protocol, ports=ports, chain=chain)


class IptablesEngine(FilterEngine):
    """FilterEngine backed by the iptables command.

    Features:
    - Lock-aware: every invocation carries -w
    - Idempotent primitives (outcomes instead of errors for no-ops)
    - Dry-run mode support
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        iptables_bin: str = "iptables",
        iptables_save_bin: str = "iptables-save",
    ) -> None:
        """Initialize iptables engine.

        Args:
            ctx: Execution context
            executor: Command executor
            iptables_bin: iptables executable
            iptables_save_bin: iptables-save executable
        """
        self.ctx = ctx
        self.executor = executor
        self.iptables_bin = iptables_bin
        self.iptables_save_bin = iptables_save_bin

    # =========================================================================
    # Chains
    # =========================================================================

    def chain_exists(self, chain: str) -> bool:
        result = self._run_iptables(["-n", "-L", chain], mutating=False)
        return result.success

    def create_chain(self, chain: str) -> EngineOutcome:
        result = self._run_iptables(["-N", chain])
        if result.success:
            return EngineOutcome.APPLIED
        if _matches_any(EXISTS_PATTERNS, result.stderr):
            return EngineOutcome.UNCHANGED
        raise self._failure(f"Failed to create chain {chain}", result, chain=chain)

    def flush_chain(self, chain: str) -> EngineOutcome:
        result = self._run_iptables(["-F", chain])
        if result.success:
            return EngineOutcome.APPLIED
        if _matches_any(NOT_FOUND_PATTERNS, result.stderr):
            return EngineOutcome.NOT_FOUND
        raise self._failure(f"Failed to flush chain {chain}", result, chain=chain)

    def delete_chain(self, chain: str) -> EngineOutcome:
        result = self._run_iptables(["-X", chain])
        if result.success:
            return EngineOutcome.APPLIED
        if _matches_any(NOT_FOUND_PATTERNS, result.stderr):
            return EngineOutcome.NOT_FOUND
        raise self._failure(
            f"Failed to delete chain {chain}",
            result,
            chain=chain,
            hint="The chain may still be referenced or contain rules",
        )

    # =========================================================================
    # Rules
    # =========================================================================

    def append_rule(self, chain: str, rule: Rule) -> EngineOutcome:
        result = self._run_iptables(["-A", chain] + rule.to_args())
        if not result.success:
            raise self._failure(f"Failed to add rule: {rule}", result, chain=chain, rule=str(rule))
        return EngineOutcome.APPLIED

    def insert_rule(self, chain: str, rule: Rule, position: int = 1) -> EngineOutcome:
        result = self._run_iptables(["-I", chain, str(position)] + rule.to_args())
        if not result.success:
            raise self._failure(f"Failed to insert rule: {rule}", result, chain=chain, rule=str(rule))
        return EngineOutcome.APPLIED

    def delete_rule(self, chain: str, position: int) -> EngineOutcome:
        result = self._run_iptables(["-D", chain, str(position)])
        if result.success:
            return EngineOutcome.APPLIED
        if _matches_any(NOT_FOUND_PATTERNS, result.stderr):
            return EngineOutcome.NOT_FOUND
        raise self._failure(f"Failed to delete rule {position} of {chain}", result, chain=chain)

    def list_rules(self, chain: str) -> list[Rule]:
        result = self._run_iptables(["-S", chain], mutating=False)
        if not result.success:
            return []

        rules = []
        for line in result.stdout.splitlines():
            rule = parse_rule_spec(line, chain)
            if rule is not None:
                rules.append(rule)
        return rules

    # =========================================================================
    # Hook references
    # =========================================================================

    def hook_exists(self, hook: str, ref: HookReference) -> bool:
        # -C is a query; run it even in dry-run
        result = self._run_iptables(["-C", hook] + ref.to_args(), mutating=False)
        if result.success:
            return True
        if result.return_code == 1 or _matches_any(NOT_FOUND_PATTERNS, result.stderr):
            return False
        raise self._failure(f"Failed to check hook {ref}", result, chain=hook, rule=str(ref))

    def insert_hook(self, hook: str, ref: HookReference, position: int = 1) -> EngineOutcome:
        result = self._run_iptables(["-I", hook, str(position)] + ref.to_args())
        if not result.success:
            raise self._failure(f"Failed to hook {ref} into {hook}", result, chain=hook, rule=str(ref))
        return EngineOutcome.APPLIED

    def delete_hook(self, hook: str, ref: HookReference) -> EngineOutcome:
        result = self._run_iptables(["-D", hook] + ref.to_args())
        if result.success:
            return EngineOutcome.APPLIED
        if _matches_any(NOT_FOUND_PATTERNS, result.stderr):
            return EngineOutcome.NOT_FOUND
        raise self._failure(f"Failed to remove hook {ref}", result, chain=hook, rule=str(ref))

    def list_hook_references(self, hook: str, chain: str) -> list[HookReference]:
        result = self._run_iptables(["-S", hook], mutating=False)
        if not result.success:
            return []

        refs = []
        for line in result.stdout.splitlines():
            ref = parse_hook_spec(line, hook, chain)
            if ref is not None:
                refs.append(ref)
        return refs

    # =========================================================================
    # Snapshot source
    # =========================================================================

    def dump(self) -> str:
        # Raises ExecutionError on a non-zero exit
        result = self.executor.run([self.iptables_save_bin], mutating=False)
        return result.stdout

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _run_iptables(
        self,
        args: list[str],
        *,
        mutating: bool = True,
    ) -> CommandResult:
        """Run iptables command against the filter table.

        Args:
            args: Command arguments
            mutating: Whether the call changes state (skipped in dry-run)

        Returns:
            CommandResult (never raises on non-zero exit)
        """
        # -w waits for the xtables lock instead of failing when another
        # process (or another chainguard run) holds it
        cmd = [self.iptables_bin, "-w", "-t", TABLE] + args
        return self.executor.run(cmd, check=False, mutating=mutating)

    def _failure(
        self,
        message: str,
        result: CommandResult,
        *,
        chain: Optional[str] = None,
        rule: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> FirewallError:
        details = [f"Command: {shlex.join(result.command)}", f"Exit code: {result.return_code}"]
        if result.stderr.strip():
            details.append(result.stderr.strip())
        return FirewallError(message, chain=chain, rule=rule, hint=hint, details=details)
