"""Unit tests for status reporting."""

from unittest.mock import Mock

import pytest

from chainguard.core.config import FirewallConfig
from chainguard.services.engine import INPUT_HOOK, HookReference, Rule
from chainguard.services.memory import InMemoryEngine
from chainguard.services.reconciler import build_chain_rules
from chainguard.services.snapshot import SnapshotManager
from chainguard.services.status import StatusReporter


CHAIN = "CUSTOM_FIREWALL"


@pytest.fixture
def engine():
    return InMemoryEngine()


def _reporter(tmp_path, engine, console=None, **overrides):
    values = {
        "chain": CHAIN,
        "ports": "80,443",
        "backup_dir": tmp_path / "backups",
        "log_file": tmp_path / "firewall.log",
    }
    values.update(overrides)
    config = FirewallConfig(**values)
    console = console or Mock()
    snapshots = SnapshotManager(engine, config.backup_dir, console)
    return StatusReporter(engine, config, snapshots, console)


class TestReport:
    """Tests for StatusReporter.report."""

    def test_absent_chain_not_active(self, tmp_path, engine):
        report = _reporter(tmp_path, engine).report()

        assert not report.active
        assert report.rule_count == 0
        assert report.hooks == {"tcp": 0, "udp": 0}
        assert report.log_file == tmp_path / "firewall.log"
        assert engine.calls == []

    def test_whitelist_counts(self, tmp_path, engine):
        engine.chains[CHAIN] = build_chain_rules("whitelist", ["10.0.0.1", "10.0.0.2"])
        engine.hooks[INPUT_HOOK] = [HookReference("tcp", "80,443", CHAIN)]

        report = _reporter(tmp_path, engine).report()

        assert report.active
        assert report.rule_count == 4
        assert report.entry_count == 2
        assert report.blocked_count == 0
        assert report.hooks == {"tcp": 1, "udp": 0}
        assert report.hooked

    def test_blacklist_counts(self, tmp_path, engine):
        engine.chains[CHAIN] = build_chain_rules("blacklist", ["10.0.0.1", "10.0.0.2", "10.0.0.3"])

        report = _reporter(tmp_path, engine, mode="blacklist").report()

        assert report.entry_count == 3
        assert report.blocked_count == 3
        assert not report.hooked

    def test_rules_in_order(self, tmp_path, engine):
        engine.chains[CHAIN] = [Rule(target="ACCEPT", source="10.0.0.9"), Rule(target="REJECT")]

        report = _reporter(tmp_path, engine).report()

        assert [r.target for r in report.rules] == ["ACCEPT", "REJECT"]

    def test_snapshots_reported(self, tmp_path, engine):
        reporter = _reporter(tmp_path, engine)
        reporter.snapshots.take()
        latest = reporter.snapshots.take()

        report = reporter.report()

        assert report.snapshot_count == 2
        assert report.latest_snapshot == latest

    def test_read_only(self, tmp_path, engine):
        engine.chains[CHAIN] = build_chain_rules("whitelist", ["10.0.0.1"])

        _reporter(tmp_path, engine).report()

        assert engine.calls == []


class TestDisplay:
    """Tests for StatusReporter.display."""

    def test_not_active_summary(self, tmp_path, engine):
        console = Mock()
        reporter = _reporter(tmp_path, engine, console)

        reporter.display(reporter.report())

        items = console.summary.call_args[0][1]
        assert "not active" in items["Status"]
        console.table.assert_not_called()

    def test_active_summary_and_table(self, tmp_path, engine):
        console = Mock()
        console.verbosity = 1
        engine.chains[CHAIN] = build_chain_rules("blacklist", ["10.0.0.1"])
        reporter = _reporter(tmp_path, engine, console, mode="blacklist")

        reporter.display(reporter.report())

        items = console.summary.call_args[0][1]
        assert "active" in items["Status"]
        assert items["Blocked IPs"] == 1
        rows = console.table.call_args[0][2]
        assert rows[0] == ["1", "RETURN", "local"]
        assert rows[1] == ["2", "DROP", "10.0.0.1"]
        assert rows[2] == ["3", "RETURN", "any"]
