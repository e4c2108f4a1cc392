"""Unit tests for the in-memory filter engine."""

import pytest

from chainguard.core.exceptions import FirewallError
from chainguard.services.engine import EngineOutcome, HookReference, Rule
from chainguard.services.memory import InMemoryEngine


CHAIN = "CUSTOM_FIREWALL"
HOOK = HookReference("tcp", "80,443", CHAIN)


class TestInMemoryEngine:
    """The in-memory engine keeps iptables' constraints."""

    def test_create_twice_unchanged(self):
        engine = InMemoryEngine()
        assert engine.create_chain(CHAIN) == EngineOutcome.APPLIED
        assert engine.create_chain(CHAIN) == EngineOutcome.UNCHANGED

    def test_missing_chain_outcomes(self):
        engine = InMemoryEngine()
        assert engine.flush_chain(CHAIN) == EngineOutcome.NOT_FOUND
        assert engine.delete_chain(CHAIN) == EngineOutcome.NOT_FOUND
        assert engine.delete_hook("INPUT", HOOK) == EngineOutcome.NOT_FOUND
        assert engine.list_rules(CHAIN) == []

    def test_cannot_hook_missing_chain(self):
        with pytest.raises(FirewallError):
            InMemoryEngine().insert_hook("INPUT", HOOK)

    def test_cannot_append_to_missing_chain(self):
        with pytest.raises(FirewallError):
            InMemoryEngine().append_rule(CHAIN, Rule(target="ACCEPT"))

    def test_cannot_delete_referenced_chain(self):
        engine = InMemoryEngine()
        engine.create_chain(CHAIN)
        engine.insert_hook("INPUT", HOOK)

        with pytest.raises(FirewallError):
            engine.delete_chain(CHAIN)

    def test_cannot_delete_non_empty_chain(self):
        engine = InMemoryEngine()
        engine.create_chain(CHAIN)
        engine.append_rule(CHAIN, Rule(target="RETURN"))

        with pytest.raises(FirewallError):
            engine.delete_chain(CHAIN)

    def test_insert_positions(self):
        engine = InMemoryEngine()
        engine.create_chain(CHAIN)
        engine.append_rule(CHAIN, Rule(target="RETURN"))
        engine.insert_rule(CHAIN, Rule(target="DROP", source="10.0.0.1"))

        assert [r.target for r in engine.list_rules(CHAIN)] == ["DROP", "RETURN"]

    def test_injected_failure(self):
        engine = InMemoryEngine(fail_on={"create_chain"})

        with pytest.raises(FirewallError) as exc:
            engine.create_chain(CHAIN)

        assert "Injected failure" in exc.value.message
        assert engine.calls == [f"create_chain {CHAIN}"]

    def test_dump_format(self):
        engine = InMemoryEngine()
        engine.create_chain(CHAIN)
        engine.append_rule(CHAIN, Rule(target="ACCEPT", source="10.0.0.1"))
        engine.insert_hook("INPUT", HOOK)

        lines = engine.dump().splitlines()

        assert lines[0] == "*filter"
        assert f":{CHAIN} - [0:0]" in lines
        assert f"-A INPUT -p tcp -m multiport --dports 80,443 -j {CHAIN}" in lines
        assert f"-A {CHAIN} -s 10.0.0.1 -j ACCEPT" in lines
        assert lines[-1] == "COMMIT"

    def test_delete_rule_by_position(self):
        engine = InMemoryEngine()
        engine.create_chain(CHAIN)
        engine.append_rule(CHAIN, Rule(target="ACCEPT", source="10.0.0.1"))
        engine.append_rule(CHAIN, Rule(target="REJECT"))

        assert engine.delete_rule(CHAIN, 2) == EngineOutcome.APPLIED
        assert [r.target for r in engine.list_rules(CHAIN)] == ["ACCEPT"]
        assert engine.delete_rule(CHAIN, 2) == EngineOutcome.NOT_FOUND
        assert engine.delete_rule("MISSING", 1) == EngineOutcome.NOT_FOUND
