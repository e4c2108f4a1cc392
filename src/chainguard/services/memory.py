"""In-memory filter engine.

Holds chains and hook references in process memory with the same
constraints iptables enforces: a chain cannot be deleted while it has
rules or is referenced, and a hook cannot jump to a missing chain.
Used to exercise the reconciler without touching the host firewall.
"""

from typing import Optional

from chainguard.core.exceptions import FirewallError
from chainguard.services.engine import (
    INPUT_HOOK,
    EngineOutcome,
    FilterEngine,
    HookReference,
    Rule,
)


BUILTIN_HOOKS = ("INPUT", "FORWARD", "OUTPUT")


class InMemoryEngine(FilterEngine):
    """FilterEngine backed by dictionaries.

    Attributes:
        chains: Custom chain name -> ordered rules
        hooks: Built-in hook name -> ordered hook references
        calls: Log of every primitive invoked, e.g. "create_chain CUSTOM"
        fail_on: Operation names that raise FirewallError when invoked
    """

    def __init__(self, *, fail_on: Optional[set[str]] = None) -> None:
        self.chains: dict[str, list[Rule]] = {}
        self.hooks: dict[str, list[HookReference]] = {name: [] for name in BUILTIN_HOOKS}
        self.calls: list[str] = []
        self.fail_on: set[str] = set(fail_on or ())

    def _call(self, operation: str, subject: str) -> None:
        self.calls.append(f"{operation} {subject}")
        if operation in self.fail_on:
            raise FirewallError(
                f"Injected failure: {operation} {subject}",
                chain=subject,
            )

    def _hook(self, hook: str) -> list[HookReference]:
        if hook not in self.hooks:
            raise FirewallError(f"No such hook: {hook}", chain=hook)
        return self.hooks[hook]

    def _references(self, chain: str) -> int:
        return sum(
            1 for refs in self.hooks.values() for ref in refs if ref.chain == chain
        )

    # Chains
    def chain_exists(self, chain: str) -> bool:
        return chain in self.chains

    def create_chain(self, chain: str) -> EngineOutcome:
        self._call("create_chain", chain)
        if chain in self.chains:
            return EngineOutcome.UNCHANGED
        self.chains[chain] = []
        return EngineOutcome.APPLIED

    def flush_chain(self, chain: str) -> EngineOutcome:
        self._call("flush_chain", chain)
        if chain not in self.chains:
            return EngineOutcome.NOT_FOUND
        self.chains[chain].clear()
        return EngineOutcome.APPLIED

    def delete_chain(self, chain: str) -> EngineOutcome:
        self._call("delete_chain", chain)
        if chain not in self.chains:
            return EngineOutcome.NOT_FOUND
        if self._references(chain):
            raise FirewallError(f"Chain {chain} is still referenced", chain=chain)
        if self.chains[chain]:
            raise FirewallError(f"Chain {chain} is not empty", chain=chain)
        del self.chains[chain]
        return EngineOutcome.APPLIED

    # Rules
    def append_rule(self, chain: str, rule: Rule) -> EngineOutcome:
        self._call("append_rule", chain)
        if chain not in self.chains:
            raise FirewallError(f"No such chain: {chain}", chain=chain, rule=str(rule))
        self.chains[chain].append(rule)
        return EngineOutcome.APPLIED

    def insert_rule(self, chain: str, rule: Rule, position: int = 1) -> EngineOutcome:
        self._call("insert_rule", chain)
        if chain not in self.chains:
            raise FirewallError(f"No such chain: {chain}", chain=chain, rule=str(rule))
        self.chains[chain].insert(position - 1, rule)
        return EngineOutcome.APPLIED

    def delete_rule(self, chain: str, position: int) -> EngineOutcome:
        self._call("delete_rule", chain)
        rules = self.chains.get(chain)
        if rules is None or not 1 <= position <= len(rules):
            return EngineOutcome.NOT_FOUND
        del rules[position - 1]
        return EngineOutcome.APPLIED

    def list_rules(self, chain: str) -> list[Rule]:
        return list(self.chains.get(chain, []))

    # Hook references
    def hook_exists(self, hook: str, ref: HookReference) -> bool:
        return ref in self._hook(hook)

    def insert_hook(self, hook: str, ref: HookReference, position: int = 1) -> EngineOutcome:
        self._call("insert_hook", hook)
        if ref.chain not in self.chains:
            raise FirewallError(f"No such chain: {ref.chain}", chain=hook, rule=str(ref))
        self._hook(hook).insert(position - 1, ref)
        return EngineOutcome.APPLIED

    def delete_hook(self, hook: str, ref: HookReference) -> EngineOutcome:
        self._call("delete_hook", hook)
        refs = self._hook(hook)
        if ref not in refs:
            return EngineOutcome.NOT_FOUND
        refs.remove(ref)
        return EngineOutcome.APPLIED

    def list_hook_references(self, hook: str, chain: str) -> list[HookReference]:
        return [ref for ref in self._hook(hook) if ref.chain == chain]

    # Snapshot source
    def dump(self) -> str:
        self._call("dump", "filter")
        lines = ["*filter"]
        for hook in BUILTIN_HOOKS:
            lines.append(f":{hook} ACCEPT [0:0]")
        for chain in self.chains:
            lines.append(f":{chain} - [0:0]")
        for hook in BUILTIN_HOOKS:
            for ref in self.hooks[hook]:
                lines.append(" ".join(["-A", hook] + ref.to_args()))
        for chain, rules in self.chains.items():
            for rule in rules:
                lines.append(" ".join(["-A", chain] + rule.to_args()))
        lines.append("COMMIT")
        return "\n".join(lines) + "\n"

    def input_hooks(self) -> list[HookReference]:
        """Hook references currently in INPUT, front first."""
        return list(self.hooks[INPUT_HOOK])
