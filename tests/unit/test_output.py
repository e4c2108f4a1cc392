"""Unit tests for console output and the run log."""

import re
from datetime import datetime

from chainguard.core.output import Console, Verbosity, plain
from chainguard.core.runlog import LogLevel, RunLog, format_line


LINE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[(INFO|WARN|ERROR|DEBUG)\] .*$")


class TestFormatLine:
    """Tests for log line rendering."""

    def test_format(self):
        line = format_line(LogLevel.WARN, "Chain missing", datetime(2024, 1, 31, 12, 0, 5))
        assert line == "2024-01-31 12:00:05 [WARN] Chain missing"

    def test_newlines_flattened(self):
        line = format_line(LogLevel.ERROR, "first\nsecond")
        assert "\n" not in line
        assert line.endswith("[ERROR] first second")


class TestRunLog:
    """Tests for RunLog file appends."""

    def test_appends_lines(self, tmp_path):
        log = RunLog(tmp_path / "logs" / "firewall.log")

        log.write(LogLevel.INFO, "one")
        log.write(LogLevel.DEBUG, "two")

        lines = (tmp_path / "logs" / "firewall.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert all(LINE_PATTERN.match(line) for line in lines)
        assert lines[1].endswith("[DEBUG] two")

    def test_disabled_writes_nothing(self, tmp_path):
        log = RunLog(tmp_path / "firewall.log", enabled=False)
        log.write(LogLevel.INFO, "ignored")
        assert not (tmp_path / "firewall.log").exists()

    def test_unwritable_path_never_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        log = RunLog(blocker / "firewall.log")

        log.write(LogLevel.INFO, "lost")

        assert not log.usable


class TestConsoleTee:
    """Every leveled message is mirrored to the run log."""

    def _console(self, tmp_path, verbosity=Verbosity.QUIET):
        console = Console()
        console.configure(verbosity=verbosity)
        log = RunLog(tmp_path / "firewall.log")
        console.attach_log(log)
        return console, tmp_path / "firewall.log"

    def test_levels_recorded_regardless_of_verbosity(self, tmp_path):
        console, path = self._console(tmp_path)

        console.info("info message")
        console.warn("warn message")
        console.error("error message")
        console.debug("debug message")
        console.step("step message")

        text = path.read_text(encoding="utf-8")
        assert "[INFO] info message" in text
        assert "[WARN] warn message" in text
        assert "[ERROR] error message" in text
        assert "[DEBUG] debug message" in text
        assert "[INFO] step message" in text

    def test_markup_stripped(self, tmp_path):
        console, path = self._console(tmp_path)

        console.info("[bold]Chain[/bold] active")

        assert path.read_text(encoding="utf-8").rstrip().endswith("[INFO] Chain active")

    def test_dry_run_marked(self, tmp_path):
        console, path = self._console(tmp_path)
        console.configure(verbosity=Verbosity.QUIET, dry_run=True)

        console.dry_run_msg("Run: iptables -w -t filter -N X")

        assert "[INFO] [DRY-RUN] Would: Run: iptables" in path.read_text(encoding="utf-8")

    def test_detached(self, tmp_path):
        console, path = self._console(tmp_path)
        console.attach_log(None)

        console.info("nothing")

        assert not path.exists()


class TestPlain:
    def test_unbalanced_markup_left_alone(self):
        assert plain("[/bold] broken") == "[/bold] broken"

    def test_escaped_brackets(self):
        assert plain("\\[y/N]") == "[y/N]"
