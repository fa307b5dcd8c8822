"""
Tests for the raspi-health CLI.
Host tools are replaced with fakes; every path lives under tmp_path.
"""

import json

import pytest
from click.testing import CliRunner

import raspi_health.cli as cli_module
from raspi_health import __version__
from raspi_health.cli import cli
from raspi_health.signals.models import SignalKind
from raspi_health.utils.lock import RunLock

from fakes import FakeCollector, FakeServices, make_reading


@pytest.fixture
def fake_host(monkeypatch):
    """Patch the CLI factories; returns the objects so tests can tweak them."""
    host = {
        "collector": FakeCollector(),
        "services": FakeServices(active={"ssh.service", "docker.service"}),
    }
    monkeypatch.setattr(cli_module, "_build_collector", lambda config: host["collector"])
    monkeypatch.setattr(cli_module, "_build_service_manager", lambda config: host["services"])
    monkeypatch.setattr(cli_module, "_build_sink", lambda config: None)
    return host


def _invoke(config_file, *args):
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(config_file), *args])


def _state(tmp_path):
    return json.loads((tmp_path / "state" / "alert-state.json").read_text())


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_version_command(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"raspi-health v{__version__}" in result.output

    def test_help_command(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "raspi-health" in result.output
        for command in ("check", "temp-check", "backup", "image", "install", "status"):
            assert command in result.output

    def test_missing_config_file(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "check"])
        assert result.exit_code == 2  # click usage error

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("network:\n  ping_targets: [8.8.8.8]\n")
        result = CliRunner().invoke(cli, ["--config", str(path), "status"])
        assert result.exit_code == 1
        assert "Configuration Error" in result.output


class TestCheck:
    """Full and temperature-only checks."""

    def test_healthy_check(self, config_file, tmp_path, fake_host):
        result = _invoke(config_file, "check")

        assert result.exit_code == 0, result.output
        assert "Health Check" in result.output
        assert _state(tmp_path)["signals"] == {}
        log = (tmp_path / "log" / "health-monitor.log").read_text()
        assert "SUMMARY check: 10 signals" in log

    def test_hot_pi_exits_critical(self, config_file, tmp_path, fake_host):
        fake_host["collector"].samples[SignalKind.TEMPERATURE] = [
            make_reading(SignalKind.TEMPERATURE, 82.0, "°C")
        ]

        result = _invoke(config_file, "temp-check")

        assert result.exit_code == 2
        assert _state(tmp_path)["signals"]["temperature"]["severity"] == "critical"
        log = (tmp_path / "log" / "health-monitor.log").read_text()
        assert "[ERROR] ALERT [critical] temperature" in log

    def test_second_run_does_not_realert(self, config_file, tmp_path, fake_host):
        fake_host["collector"].samples[SignalKind.TEMPERATURE] = [
            make_reading(SignalKind.TEMPERATURE, 82.0, "°C")
        ]
        _invoke(config_file, "temp-check")
        _invoke(config_file, "temp-check")

        log = (tmp_path / "log" / "health-monitor.log").read_text()
        assert log.count("ALERT [critical] temperature") == 1

    def test_service_restarted(self, config_file, tmp_path, fake_host):
        fake_host["services"].active.discard("docker.service")
        fake_host["collector"].samples[SignalKind.SERVICE_STATE] = [
            make_reading(SignalKind.SERVICE_STATE, False, subject="docker.service")
        ]

        result = _invoke(config_file, "check")

        assert result.exit_code == 0, result.output
        assert fake_host["services"].restarts == ["docker.service"]
        assert _state(tmp_path)["signals"]["service_state:docker.service"]["severity"] == "warning"

    def test_dry_run_changes_nothing(self, config_file, tmp_path, fake_host):
        fake_host["services"].active.discard("docker.service")
        fake_host["collector"].samples[SignalKind.SERVICE_STATE] = [
            make_reading(SignalKind.SERVICE_STATE, False, subject="docker.service")
        ]

        result = _invoke(config_file, "--dry-run", "check")

        assert result.exit_code == 2
        assert fake_host["services"].restarts == []
        assert not (tmp_path / "state" / "alert-state.json").exists()

    def test_lock_held_skips_run(self, config_file, tmp_path, fake_host):
        fake_host["collector"].samples[SignalKind.TEMPERATURE] = [
            make_reading(SignalKind.TEMPERATURE, 82.0, "°C")
        ]

        with RunLock(tmp_path / "run" / "raspi-health.lock"):
            result = _invoke(config_file, "check")

        assert result.exit_code == 75
        assert fake_host["collector"].collected == []
        assert not (tmp_path / "state" / "alert-state.json").exists()
        log = (tmp_path / "log" / "health-monitor.log").read_text()
        assert "SUMMARY check: skipped" in log

    def test_unwritable_log_dir_falls_back_to_console(self, config_file, tmp_path, fake_host, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monkeypatch.setenv("RASPI_HEALTH_LOG_DIR", str(blocker / "log"))

        result = _invoke(config_file, "check")

        assert result.exit_code == 0, result.output
        assert (tmp_path / "state" / "alert-state.json").exists()

    def test_export_json(self, config_file, tmp_path, fake_host):
        export = tmp_path / "report.json"

        result = _invoke(config_file, "--quiet", "check", "--export", str(export))

        assert result.exit_code == 0, result.output
        report = json.loads(export.read_text())["raspi_health_report"]
        assert report["mode"] == "check"
        assert report["version"] == __version__
        assert len(report["findings"]) == 10

    def test_json_output_stays_parseable_on_critical(self, config_file, fake_host):
        fake_host["collector"].samples[SignalKind.TEMPERATURE] = [
            make_reading(SignalKind.TEMPERATURE, 82.0, "°C")
        ]

        result = _invoke(config_file, "--output-format", "json", "temp-check")

        assert result.exit_code == 2
        report = json.loads(result.stdout)["raspi_health_report"]
        assert report["mode"] == "temp-check"
        assert "unresolved after recovery" in result.stderr

    def test_executive_format(self, config_file, fake_host):
        result = _invoke(config_file, "--output-format", "executive", "temp-check")
        assert result.exit_code == 0
        assert "RASPBERRY PI HEALTH SUMMARY" in result.output


class TestStatus:
    """Last known state."""

    def test_status_after_alert(self, config_file, fake_host):
        fake_host["collector"].samples[SignalKind.TEMPERATURE] = [
            make_reading(SignalKind.TEMPERATURE, 75.0, "°C")
        ]
        _invoke(config_file, "temp-check")

        result = _invoke(config_file, "status")

        assert result.exit_code == 0
        assert "temperature" in result.output
        assert "WARNING" in result.output

    def test_status_clean(self, config_file):
        result = _invoke(config_file, "status")
        assert result.exit_code == 0
        assert "No signal is in warning or critical state" in result.output


class TestBackupCommands:
    """Backup, image and listing."""

    def test_backup(self, config_file, tmp_path):
        result = _invoke(config_file, "backup")

        assert result.exit_code == 0, result.output
        archives = list((tmp_path / "backups").glob("config_backup_*.tar.gz"))
        assert len(archives) == 1
        log = (tmp_path / "log" / "backup.log").read_text()
        assert "SUMMARY backup" in log

    def test_backup_dry_run_writes_nothing(self, config_file, tmp_path):
        result = _invoke(config_file, "--dry-run", "backup")
        assert result.exit_code == 0
        assert not (tmp_path / "backups").exists()

    def test_backup_destination_unavailable(self, tmp_path, config_file, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monkeypatch.setenv("RASPI_HEALTH_BACKUP_DESTINATION", str(blocker / "backups"))

        result = _invoke(config_file, "backup")

        assert result.exit_code == 1
        assert "Backup Destination Unavailable" in result.output

    def test_image(self, config_file, tmp_path):
        device = tmp_path / "disk.img"
        device.write_bytes(b"\x00" * 4096)

        result = _invoke(config_file, "image", "--device", str(device), "--yes")

        assert result.exit_code == 0, result.output
        assert len(list((tmp_path / "backups").glob("raspi_backup_*.img.gz"))) == 1
        assert len(list((tmp_path / "backups").glob("*.sha256"))) == 1

    def test_backups_listing(self, config_file):
        _invoke(config_file, "backup")
        result = _invoke(config_file, "backups")
        assert result.exit_code == 0
        assert "Backups" in result.output
        assert "config" in result.output


class TestInstall:
    """Scheduler provisioning."""

    def test_install_is_idempotent(self, config_file, tmp_path):
        cron = tmp_path / "cron.d" / "raspi-health"
        logrotate = tmp_path / "logrotate.d" / "raspi-health"
        args = ["install", "--cron-file", str(cron), "--logrotate-file", str(logrotate)]

        first = _invoke(config_file, *args)
        content = cron.read_text()
        second = _invoke(config_file, *args)

        assert first.exit_code == 0, first.output
        assert second.exit_code == 0
        assert "written" in first.output
        assert "unchanged" in second.output
        assert cron.read_text() == content
        assert "--quiet check" in content
        assert "--quiet temp-check" in content
        assert f"--config {config_file.resolve()}" in content
        assert str(tmp_path / "log") in logrotate.read_text()

    def test_install_dry_run(self, config_file, tmp_path):
        cron = tmp_path / "cron.d" / "raspi-health"
        result = _invoke(
            config_file, "--dry-run", "install",
            "--cron-file", str(cron),
            "--logrotate-file", str(tmp_path / "logrotate"),
        )
        assert result.exit_code == 0
        assert not cron.exists()
