"""Unit tests for the CLI commands."""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import typer
from typer.testing import CliRunner

from chainguard import __version__
from chainguard.cli import app
from chainguard.commands.firewall import _check_root, _get_services
from chainguard.core.config import FirewallConfig
from chainguard.core.exceptions import BackupError, ConfigurationError, FirewallError
from chainguard.core.output import console
from chainguard.services.iptables import IptablesEngine
from chainguard.services.reconciler import ReconcileResult


runner = CliRunner()


@pytest.fixture(autouse=True)
def detach_run_log():
    """Keep run logs from one test out of the shared console."""
    yield
    console.attach_log(None)


def _services(tmp_path: Path, result: ReconcileResult = None):
    """Build mocked (ctx, reconciler, reporter) as returned by _get_services."""
    mock_ctx = Mock()
    mock_ctx.dry_run = False
    mock_ctx.console = Mock()

    mock_reconciler = Mock()
    mock_reconciler.chain = "CUSTOM_FIREWALL"
    mock_reconciler.config = FirewallConfig(ip_file=tmp_path / "ip.txt")
    for name in ("apply", "clean", "reload"):
        getattr(mock_reconciler, name).return_value = result or ReconcileResult(action=name)

    mock_reporter = Mock()
    return mock_ctx, mock_reconciler, mock_reporter


class TestRootCommand:
    """Tests for the root app."""

    def test_no_command_shows_help(self):
        """Running without a command prints help and exits 0."""
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "apply" in result.output

    def test_help_command(self):
        result = runner.invoke(app, ["help"])
        assert result.exit_code == 0
        assert "reload" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestCheckRoot:
    """Tests for _check_root helper."""

    def test_allows_root(self):
        mock_ctx = Mock()
        mock_ctx.dry_run = False
        with patch("chainguard.commands.firewall.os.geteuid", return_value=0):
            _check_root(mock_ctx)

    def test_allows_dry_run(self):
        mock_ctx = Mock()
        mock_ctx.dry_run = True
        with patch("chainguard.commands.firewall.os.geteuid", return_value=1000):
            _check_root(mock_ctx)

    def test_rejects_non_root(self):
        mock_ctx = Mock()
        mock_ctx.dry_run = False
        with patch("chainguard.commands.firewall.os.geteuid", return_value=1000):
            with pytest.raises(typer.Exit) as exc_info:
                _check_root(mock_ctx)
            assert exc_info.value.exit_code == 6


class TestGetServices:
    """Tests for _get_services wiring."""

    def test_wires_iptables_engine(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            f"backup_dir: {tmp_path / 'backups'}\nlog_file: {tmp_path / 'firewall.log'}\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("CHAINGUARD_IPTABLES", "iptables-legacy")

        ctx, reconciler, reporter = _get_services(dry_run=True, config=config_path)

        assert ctx.dry_run
        assert isinstance(reconciler.engine, IptablesEngine)
        assert reconciler.engine.iptables_bin == "iptables-legacy"
        assert reconciler.dry_run
        assert reconciler.snapshots.dry_run
        assert reporter.engine is reconciler.engine
        assert ctx.console.log.log_path == tmp_path / "firewall.log"

    def test_ip_file_override(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"log_file: {tmp_path / 'firewall.log'}\n", encoding="utf-8")

        _, reconciler, _ = _get_services(config=config_path, ip_file=tmp_path / "other.txt")

        assert reconciler.config.ip_file == tmp_path / "other.txt"


@patch("chainguard.commands.firewall._check_root")
@patch("chainguard.commands.firewall._get_services")
class TestApplyCommand:
    """Tests for 'chainguard apply' / 'start'."""

    def test_apply(self, mock_get_services, mock_check_root, tmp_path):
        (tmp_path / "ip.txt").write_text("10.0.0.2\n10.0.0.1\n", encoding="utf-8")
        ctx, reconciler, reporter = _services(tmp_path)
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 0
        reconciler.apply.assert_called_once_with(["10.0.0.1", "10.0.0.2"], overwrite=False)
        mock_check_root.assert_called_once_with(ctx)
        reporter.display.assert_called_once()

    def test_start_alias_with_yes(self, mock_get_services, mock_check_root, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["start", "--yes"])

        assert result.exit_code == 0
        reconciler.apply.assert_called_once_with([], overwrite=True)
        assert mock_get_services.call_args[1]["yes"] is True

    def test_options_propagate(self, mock_get_services, mock_check_root, tmp_path):
        mock_get_services.return_value = _services(tmp_path)

        runner.invoke(app, [
            "apply", "--dry-run", "-vv", "--no-color",
            "--config", str(tmp_path / "c.yaml"), "--ip-file", str(tmp_path / "x.txt"),
        ])

        kwargs = mock_get_services.call_args[1]
        assert kwargs["dry_run"] is True
        assert kwargs["verbose"] == 2
        assert kwargs["no_color"] is True
        assert kwargs["config"] == tmp_path / "c.yaml"
        assert kwargs["ip_file"] == tmp_path / "x.txt"

    def test_declined_overwrite_exits_zero(self, mock_get_services, mock_check_root, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path, ReconcileResult(action="apply", aborted=True))
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 0
        reporter.display.assert_not_called()

    def test_firewall_error_exit_code(self, mock_get_services, mock_check_root, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        reconciler.apply.side_effect = FirewallError("Failed to add rule", chain="CUSTOM_FIREWALL")
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 15

    def test_backup_error_exit_code(self, mock_get_services, mock_check_root, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        reconciler.apply.side_effect = BackupError("Backup failed")
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 12

    def test_configuration_error_exit_code(self, mock_get_services, mock_check_root):
        mock_get_services.side_effect = ConfigurationError("Invalid configuration")

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 2

    def test_requires_root(self, mock_get_services, mock_check_root, tmp_path):
        mock_get_services.return_value = _services(tmp_path)
        mock_check_root.side_effect = typer.Exit(6)

        result = runner.invoke(app, ["apply"])

        assert result.exit_code == 6


@patch("chainguard.commands.firewall._check_root")
@patch("chainguard.commands.firewall._get_services")
class TestCleanAndReloadCommands:
    """Tests for 'clean', 'stop' and 'reload'."""

    @pytest.mark.parametrize("command", ["clean", "stop"])
    def test_clean(self, mock_get_services, mock_check_root, command, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, [command])

        assert result.exit_code == 0
        reconciler.clean.assert_called_once_with()
        reporter.display.assert_called_once()

    def test_reload(self, mock_get_services, mock_check_root, tmp_path):
        (tmp_path / "ip.txt").write_text("10.0.0.1\nbad.ip\n", encoding="utf-8")
        ctx, reconciler, reporter = _services(tmp_path)
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["reload"])

        assert result.exit_code == 0
        reconciler.reload.assert_called_once_with(["10.0.0.1"])


@patch("chainguard.commands.firewall._get_services")
class TestBackupAndStatusCommands:
    """Tests for 'backup' and 'status'."""

    @patch("chainguard.commands.firewall._check_root")
    def test_backup(self, mock_check_root, mock_get_services, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        reconciler.snapshots.take.return_value = tmp_path / "iptables_20240131_120000.bak"
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["backup"])

        assert result.exit_code == 0
        reconciler.snapshots.take.assert_called_once()

    def test_backup_list(self, mock_get_services, tmp_path):
        snapshot = tmp_path / "iptables_20240131_120000.bak"
        snapshot.write_text("*filter\nCOMMIT\n", encoding="utf-8")
        ctx, reconciler, reporter = _services(tmp_path)
        reconciler.snapshots.list_snapshots.return_value = [snapshot]
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["backup", "--list"])

        assert result.exit_code == 0
        reconciler.snapshots.take.assert_not_called()
        rows = ctx.console.table.call_args[0][2]
        assert rows[0][1] == snapshot.name

    def test_status(self, mock_get_services, tmp_path):
        ctx, reconciler, reporter = _services(tmp_path)
        mock_get_services.return_value = (ctx, reconciler, reporter)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        reporter.report.assert_called_once()
        reporter.display.assert_called_once_with(reporter.report.return_value)


class TestConfigCommands:
    """Tests for 'config show' and 'config init'."""

    def test_init_and_show(self, tmp_path):
        path = tmp_path / "config.yaml"

        result = runner.invoke(app, ["config", "init", "--config", str(path)])
        assert result.exit_code == 0
        assert path.exists()

        result = runner.invoke(app, ["config", "show", "--config", str(path)])
        assert result.exit_code == 0
        assert "CUSTOM_FIREWALL" in result.output

    def test_init_refuses_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("chain: KEEP\n", encoding="utf-8")

        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 2
        assert "KEEP" in path.read_text(encoding="utf-8")

    def test_show_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ports: '0'\n", encoding="utf-8")

        result = runner.invoke(app, ["config", "show", "--config", str(path)])

        assert result.exit_code == 2
