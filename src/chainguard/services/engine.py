"""Filter engine interface.

The reconciler never talks to iptables directly. It drives a FilterEngine,
a narrow set of chain and hook primitives that each report whether they
changed something, found the engine already in the requested state, or
found nothing to act on. Hard failures raise FirewallError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


# The single hook point chainguard manages
INPUT_HOOK = "INPUT"

# Match used by the always-first local-traffic rule
LOCAL_SOURCE_MATCH: tuple[str, ...] = ("-m", "addrtype", "--src-type", "LOCAL")


class EngineOutcome(str, Enum):
    """Result of an engine primitive."""
    APPLIED = "applied"      # state changed
    UNCHANGED = "unchanged"  # already in the desired state (e.g. chain exists)
    NOT_FOUND = "not_found"  # nothing to act on (e.g. chain or hook absent)


class Action(str, Enum):
    """Rule target."""
    ACCEPT = "ACCEPT"
    DROP = "DROP"
    REJECT = "REJECT"
    RETURN = "RETURN"


@dataclass(frozen=True)
class Rule:
    """One rule inside the managed chain.

    Attributes:
        target: Jump target (ACCEPT, DROP, REJECT, RETURN or a chain)
        source: Source address/CIDR, None for any
        matches: Extra match arguments, e.g. ("-m", "addrtype", ...)
        target_options: Arguments after the target, e.g. ("--reject-with", ...)
    """
    target: str
    source: Optional[str] = None
    matches: tuple[str, ...] = ()
    target_options: tuple[str, ...] = ()

    def to_args(self) -> list[str]:
        """Convert rule to iptables arguments (without the chain)."""
        args: list[str] = []
        if self.source:
            args.extend(["-s", self.source])
        args.extend(self.matches)
        args.extend(["-j", self.target])
        args.extend(self.target_options)
        return args

    @property
    def is_local(self) -> bool:
        """Check if this is the local-source rule."""
        return self.matches == LOCAL_SOURCE_MATCH

    def __str__(self) -> str:
        """Human-readable representation."""
        if self.is_local:
            return f"{self.target} local traffic"
        if self.source:
            return f"{self.target} from {self.source}"
        return f"{self.target} everything else"


@dataclass(frozen=True)
class HookReference:
    """A jump from the INPUT hook into the managed chain.

    Attributes:
        protocol: tcp or udp
        ports: multiport --dports specification
        chain: Target chain name
    """
    protocol: str
    ports: str
    chain: str

    def to_args(self) -> list[str]:
        """Convert hook reference to iptables arguments (without the hook)."""
        return [
            "-p", self.protocol,
            "-m", "multiport", "--dports", self.ports,
            "-j", self.chain,
        ]

    def __str__(self) -> str:
        return f"{self.protocol}/{self.ports} -> {self.chain}"


class FilterEngine(ABC):
    """Primitive operations against the packet filter.

    Every mutating primitive must be safe to repeat: deleting something
    already gone reports NOT_FOUND, creating something already there
    reports UNCHANGED.
    """

    @abstractmethod
    def chain_exists(self, chain: str) -> bool:
        """Check if a chain exists."""

    @abstractmethod
    def create_chain(self, chain: str) -> EngineOutcome:
        """Create an empty chain (UNCHANGED if it exists)."""

    @abstractmethod
    def flush_chain(self, chain: str) -> EngineOutcome:
        """Remove all rules from a chain (NOT_FOUND if absent)."""

    @abstractmethod
    def delete_chain(self, chain: str) -> EngineOutcome:
        """Delete an empty, unreferenced chain (NOT_FOUND if absent)."""

    @abstractmethod
    def append_rule(self, chain: str, rule: Rule) -> EngineOutcome:
        """Append a rule to the end of a chain."""

    @abstractmethod
    def insert_rule(self, chain: str, rule: Rule, position: int = 1) -> EngineOutcome:
        """Insert a rule at a 1-based position."""

    @abstractmethod
    def delete_rule(self, chain: str, position: int) -> EngineOutcome:
        """Delete the rule at a 1-based position (NOT_FOUND if there is none)."""

    @abstractmethod
    def hook_exists(self, hook: str, ref: HookReference) -> bool:
        """Check if an identical hook reference exists."""

    @abstractmethod
    def insert_hook(self, hook: str, ref: HookReference, position: int = 1) -> EngineOutcome:
        """Insert a hook reference at a 1-based position (1 = front)."""

    @abstractmethod
    def delete_hook(self, hook: str, ref: HookReference) -> EngineOutcome:
        """Delete one matching hook reference (NOT_FOUND if none left)."""

    @abstractmethod
    def list_rules(self, chain: str) -> list[Rule]:
        """List rules of a chain in order (empty if absent)."""

    @abstractmethod
    def list_hook_references(self, hook: str, chain: str) -> list[HookReference]:
        """List hook rules jumping to ``chain``, in order."""

    @abstractmethod
    def dump(self) -> str:
        """Serialize the full filter state (iptables-save format)."""
