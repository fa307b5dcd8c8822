"""Configuration management for raspi-health."""

import os
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Any, Union
from dataclasses import dataclass, field

from pydantic import ValidationError as PydanticValidationError

from ..signals.models import SignalKind, Threshold
from .errors import (
    ConfigurationError,
    ValidationError,
    validate_probe_targets,
    validate_retention_days,
)


DEFAULT_THRESHOLDS: Dict[SignalKind, Threshold] = {
    SignalKind.TEMPERATURE: Threshold(warning_level=70, critical_level=80),
    SignalKind.DISK_USAGE: Threshold(warning_level=90, critical_level=95),
    SignalKind.SD_CARD_ERRORS: Threshold(warning_level=1, critical_level=10),
}

DEFAULT_CONFIG_PATHS = [
    "/etc/fstab",
    "/etc/network/interfaces",
    "/etc/ssh/sshd_config",
    "/etc/hosts",
    "/etc/hostname",
    "/boot/config.txt",
    "/boot/cmdline.txt",
    "/etc/sysctl.conf",
    "/etc/crontab",
    "/etc/cron.d",
]


@dataclass
class ThresholdsConfig:
    """Per-signal warning/critical levels."""
    levels: Dict[SignalKind, Threshold] = field(
        default_factory=lambda: dict(DEFAULT_THRESHOLDS)
    )

    def for_kind(self, kind: SignalKind) -> Optional[Threshold]:
        return self.levels.get(kind)


@dataclass
class NetworkConfig:
    """Reachability and DNS probe settings."""
    ping_targets: List[str] = field(default_factory=lambda: ["8.8.8.8", "1.1.1.1"])
    dns_probe_host: str = "google.com"
    probe_timeout_seconds: float = 2.0


@dataclass
class AlertConfig:
    """Notification channel configuration."""
    enabled: bool = False
    email: Optional[str] = None
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0
    subject_prefix: str = "Raspberry Pi"


@dataclass
class BackupConfig:
    """Backup destination, retention and snapshot contents."""
    destination: Path = Path("/mnt/backup")
    retention_days: int = 14
    config_paths: List[str] = field(default_factory=lambda: list(DEFAULT_CONFIG_PATHS))
    include_package_list: bool = True
    image_checksum: bool = True


@dataclass
class PathsConfig:
    """Where durable state lives."""
    log_dir: Path = Path("/var/log/raspi-health")
    state_file: Path = Path("/var/lib/raspi-health/alert-state.json")
    lock_file: Path = Path("/run/lock/raspi-health.lock")

    @property
    def health_log(self) -> Path:
        return self.log_dir / "health-monitor.log"

    @property
    def backup_log(self) -> Path:
        return self.log_dir / "backup.log"


@dataclass
class OutputConfig:
    """Output formatting configuration."""
    format: str = "table"  # table, json, yaml, executive
    color: bool = True
    verbose: bool = False
    quiet: bool = False


class HealthConfig:
    """Main configuration class for raspi-health."""

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        thresholds: Optional[ThresholdsConfig] = None,
        services: Optional[List[str]] = None,
        network_config: Optional[NetworkConfig] = None,
        alert_config: Optional[AlertConfig] = None,
        backup_config: Optional[BackupConfig] = None,
        paths_config: Optional[PathsConfig] = None,
        output_config: Optional[OutputConfig] = None,
    ):
        self.config_file = config_file
        self.thresholds = thresholds or ThresholdsConfig()
        if services is not None and not isinstance(services, (list, tuple)):
            raise ConfigurationError("services must be a list of systemd unit names")
        self.services = (
            list(services)
            if services is not None
            else ["ssh.service", "docker.service", "fail2ban.service"]
        )
        self.network = network_config or NetworkConfig()
        self.alerts = alert_config or AlertConfig()
        self.backup = backup_config or BackupConfig()
        self.paths = paths_config or PathsConfig()
        self.output = output_config or OutputConfig()

        # Override with environment variables
        self._load_from_environment()
        self.validate()

    @classmethod
    def load_from_file(cls, config_path: Union[str, Path]) -> 'HealthConfig':
        """Load configuration from YAML file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

        try:
            return cls(
                config_file=config_path,
                thresholds=_parse_thresholds(data.get('thresholds', {})),
                services=data.get('services'),
                network_config=NetworkConfig(**data.get('network', {})),
                alert_config=AlertConfig(**data.get('alerts', {})),
                backup_config=_parse_backup(data.get('backup', {})),
                paths_config=_parse_paths(data.get('paths', {})),
                output_config=OutputConfig(**data.get('output', {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown setting in {config_path}: {e}")

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        if os.getenv('RASPI_HEALTH_LOG_DIR'):
            self.paths.log_dir = Path(os.getenv('RASPI_HEALTH_LOG_DIR'))
        if os.getenv('RASPI_HEALTH_STATE_FILE'):
            self.paths.state_file = Path(os.getenv('RASPI_HEALTH_STATE_FILE'))
        if os.getenv('RASPI_HEALTH_LOCK_FILE'):
            self.paths.lock_file = Path(os.getenv('RASPI_HEALTH_LOCK_FILE'))

        if os.getenv('RASPI_HEALTH_BACKUP_DESTINATION'):
            self.backup.destination = Path(os.getenv('RASPI_HEALTH_BACKUP_DESTINATION'))
        if os.getenv('RASPI_HEALTH_RETENTION_DAYS'):
            try:
                self.backup.retention_days = int(os.getenv('RASPI_HEALTH_RETENTION_DAYS'))
            except ValueError:
                raise ConfigurationError("RASPI_HEALTH_RETENTION_DAYS must be an integer")

        if os.getenv('RASPI_HEALTH_ALERT_EMAIL'):
            self.alerts.email = os.getenv('RASPI_HEALTH_ALERT_EMAIL')
        if os.getenv('RASPI_HEALTH_WEBHOOK_URL'):
            self.alerts.webhook_url = os.getenv('RASPI_HEALTH_WEBHOOK_URL')
        if os.getenv('RASPI_HEALTH_ALERTS_ENABLED'):
            self.alerts.enabled = os.getenv('RASPI_HEALTH_ALERTS_ENABLED').lower() in (
                '1', 'true', 'yes', 'on'
            )

        if os.getenv('RASPI_HEALTH_SERVICES'):
            units = os.getenv('RASPI_HEALTH_SERVICES').split(',')
            self.services = [unit.strip() for unit in units if unit.strip()]

        if os.getenv('RASPI_HEALTH_NO_COLOR'):
            self.output.color = False
        if os.getenv('RASPI_HEALTH_VERBOSE'):
            self.output.verbose = True

    def validate(self) -> None:
        """Reject settings the engine cannot run with."""
        try:
            self.network.ping_targets = validate_probe_targets(self.network.ping_targets)
            self.backup.retention_days = validate_retention_days(self.backup.retention_days)
        except ValidationError as e:
            raise ConfigurationError(str(e))

        if self.network.probe_timeout_seconds <= 0:
            raise ConfigurationError("network.probe_timeout_seconds must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the effective configuration."""
        return {
            'thresholds': {
                kind.value: threshold.model_dump()
                for kind, threshold in self.thresholds.levels.items()
            },
            'services': list(self.services),
            'network': {
                'ping_targets': self.network.ping_targets,
                'dns_probe_host': self.network.dns_probe_host,
                'probe_timeout_seconds': self.network.probe_timeout_seconds,
            },
            'alerts': {
                'enabled': self.alerts.enabled,
                'email': self.alerts.email,
                # Don't echo the webhook URL, it usually embeds a token
                'webhook_configured': bool(self.alerts.webhook_url),
                'timeout_seconds': self.alerts.timeout_seconds,
            },
            'backup': {
                'destination': str(self.backup.destination),
                'retention_days': self.backup.retention_days,
                'config_paths': self.backup.config_paths,
                'include_package_list': self.backup.include_package_list,
                'image_checksum': self.backup.image_checksum,
            },
            'paths': {
                'log_dir': str(self.paths.log_dir),
                'state_file': str(self.paths.state_file),
                'lock_file': str(self.paths.lock_file),
            },
        }

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"HealthConfig(services={len(self.services)}, backup={self.backup.destination})"


def _parse_thresholds(data: Dict[str, Any]) -> ThresholdsConfig:
    levels = dict(DEFAULT_THRESHOLDS)
    for name, values in (data or {}).items():
        try:
            kind = SignalKind(name)
        except ValueError:
            raise ConfigurationError(f"Unknown signal in thresholds: {name}")
        if values is None:
            levels.pop(kind, None)
            continue
        try:
            levels[kind] = Threshold(**values)
        except (PydanticValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid threshold for {name}: {e}")
    return ThresholdsConfig(levels=levels)


def _parse_backup(data: Dict[str, Any]) -> BackupConfig:
    data = dict(data or {})
    if 'destination' in data:
        data['destination'] = Path(data['destination'])
    return BackupConfig(**data)


def _parse_paths(data: Dict[str, Any]) -> PathsConfig:
    return PathsConfig(**{key: Path(value) for key, value in (data or {}).items()})


def get_default_config_paths() -> List[Path]:
    """Get list of default configuration file paths to check."""
    home = Path.home()
    cwd = Path.cwd()

    return [
        cwd / "raspi-health.yaml",
        cwd / "raspi-health.yml",
        home / ".config" / "raspi-health" / "config.yaml",
        home / ".config" / "raspi-health" / "config.yml",
        Path("/etc/raspi-health/config.yaml"),
        Path("/etc/raspi-health/config.yml"),
    ]


def load_config(config_file: Optional[Union[str, Path]] = None) -> HealthConfig:
    """Load configuration from file or defaults."""
    if config_file:
        return HealthConfig.load_from_file(config_file)

    # Try default locations
    for config_path in get_default_config_paths():
        if config_path.exists():
            return HealthConfig.load_from_file(config_path)

    # No config file found, use defaults with environment variables
    return HealthConfig()
