import os

import pytest
import yaml

from raspi_health.utils.config import BackupConfig, HealthConfig, PathsConfig


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep RASPI_HEALTH_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("RASPI_HEALTH_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def paths_config(tmp_path):
    return PathsConfig(
        log_dir=tmp_path / "log",
        state_file=tmp_path / "state" / "alert-state.json",
        lock_file=tmp_path / "run" / "raspi-health.lock",
    )


@pytest.fixture
def health_config(tmp_path, paths_config):
    return HealthConfig(
        services=["ssh.service", "docker.service"],
        paths_config=paths_config,
        backup_config=BackupConfig(
            destination=tmp_path / "backups",
            config_paths=[],
            include_package_list=False,
        ),
    )


@pytest.fixture
def config_file(tmp_path):
    """A config file that keeps every path inside tmp_path."""
    etc = tmp_path / "etc"
    etc.mkdir()
    (etc / "hostname").write_text("testpi\n")

    data = {
        "services": ["ssh.service", "docker.service"],
        "paths": {
            "log_dir": str(tmp_path / "log"),
            "state_file": str(tmp_path / "state" / "alert-state.json"),
            "lock_file": str(tmp_path / "run" / "raspi-health.lock"),
        },
        "backup": {
            "destination": str(tmp_path / "backups"),
            "retention_days": 14,
            "config_paths": [str(etc / "hostname")],
            "include_package_list": False,
        },
    }
    path = tmp_path / "raspi-health.yaml"
    path.write_text(yaml.safe_dump(data))
    return path
