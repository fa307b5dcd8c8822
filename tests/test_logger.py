"""
Tests for logging setup and the health log.
"""

import pytest

from raspi_health.core.installer import render_cron, render_logrotate
from raspi_health.utils.errors import ConfigurationError
from raspi_health.utils.logger import OperationLogger, setup_logger, tail_log


@pytest.fixture
def logger(tmp_path):
    log = setup_logger(name="raspi_health_test", quiet=True, log_file=tmp_path / "log" / "health.log")
    yield log
    for handler in log.handlers[:]:
        log.removeHandler(handler)
        handler.close()


def test_file_log_has_severity_tag(logger, tmp_path):
    logger.info("SUMMARY check: 10 signals")
    logger.error("docker.service: INACTIVE")

    lines = tail_log(tmp_path / "log" / "health.log")

    assert lines[0].endswith("[INFO] SUMMARY check: 10 signals")
    assert lines[1].endswith("[ERROR] docker.service: INACTIVE")


def test_debug_not_persisted(logger, tmp_path):
    logger.debug("noise")
    assert tail_log(tmp_path / "log" / "health.log") == []


def test_tail_limits_lines(logger, tmp_path):
    for i in range(10):
        logger.info(f"line {i}")
    lines = tail_log(tmp_path / "log" / "health.log", lines=3)
    assert [line.split("] ")[-1] for line in lines] == ["line 7", "line 8", "line 9"]


def test_tail_missing_file(tmp_path):
    assert tail_log(tmp_path / "missing.log") == []


def test_unwritable_log_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(ConfigurationError):
        setup_logger(name="raspi_health_test_bad", log_file=blocker / "health.log")


def test_operation_logger_reports_interrupt(logger, tmp_path):
    with pytest.raises(KeyboardInterrupt):
        with OperationLogger(logger, "full image backup"):
            raise KeyboardInterrupt

    lines = tail_log(tmp_path / "log" / "health.log")
    assert "Starting full image backup" in lines[0]
    assert "[WARNING] Interrupted full image backup" in lines[1]


def test_cron_schedule():
    cron = render_cron("/usr/local/bin/raspi-health")
    assert "0 * * * * root /usr/local/bin/raspi-health --quiet check" in cron
    assert "*/15 * * * * root /usr/local/bin/raspi-health --quiet temp-check" in cron
    assert "0 2 * * 0 root /usr/local/bin/raspi-health --quiet backup" in cron


def test_logrotate_policy(tmp_path):
    policy = render_logrotate(tmp_path / "log")
    assert policy.startswith(f"{tmp_path / 'log'}/*.log {{")
    assert "rotate 7" in policy
