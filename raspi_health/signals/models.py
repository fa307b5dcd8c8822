"""
Data model shared by the collector, evaluator, dispatcher and backup manager.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum, IntEnum, IntFlag
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator


class SignalKind(str, Enum):
    TEMPERATURE = "temperature"
    THROTTLE = "throttle_flags"
    VOLTAGE = "voltage"
    DISK_USAGE = "disk_usage"
    SD_CARD_ERRORS = "sd_card_errors"
    SMART_HEALTH = "smart_health"
    SERVICE_STATE = "service_state"
    CONTAINER_STATE = "container_state"
    NETWORK = "network_reachability"
    DNS = "dns_resolution"


class Severity(IntEnum):
    """Totally ordered: NORMAL < WARNING < CRITICAL."""

    NORMAL = 0
    WARNING = 1
    CRITICAL = 2

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Severity":
        return cls[str(label).strip().upper()]


class ThrottleBit(IntFlag):
    UNDER_VOLTAGE_NOW = 0x1
    FREQ_CAPPED_NOW = 0x2
    THROTTLED_NOW = 0x4
    UNDER_VOLTAGE_SINCE_BOOT = 0x10000
    THROTTLED_SINCE_BOOT = 0x20000


THROTTLE_DESCRIPTIONS = {
    ThrottleBit.UNDER_VOLTAGE_NOW: "Under-voltage detected",
    ThrottleBit.FREQ_CAPPED_NOW: "ARM frequency capped",
    ThrottleBit.THROTTLED_NOW: "Currently throttled",
    ThrottleBit.UNDER_VOLTAGE_SINCE_BOOT: "Under-voltage has occurred since boot",
    ThrottleBit.THROTTLED_SINCE_BOOT: "Throttling has occurred since boot",
}

_NOW_BITS = (
    ThrottleBit.UNDER_VOLTAGE_NOW,
    ThrottleBit.FREQ_CAPPED_NOW,
    ThrottleBit.THROTTLED_NOW,
)
_SINCE_BOOT_BITS = (
    ThrottleBit.UNDER_VOLTAGE_SINCE_BOOT,
    ThrottleBit.THROTTLED_SINCE_BOOT,
)


@dataclass(frozen=True)
class ThrottleFlags:
    """Firmware throttle bitset as reported by ``vcgencmd get_throttled``."""

    raw: int

    @classmethod
    def parse(cls, text: str) -> "ThrottleFlags":
        """Parse ``throttled=0x50005`` (or a bare hex/decimal value)."""
        match = re.search(r"0x([0-9a-fA-F]+)", text)
        if match:
            return cls(int(match.group(1), 16))
        return cls(int(text.strip().split("=")[-1]))

    def _has(self, bit: ThrottleBit) -> bool:
        return bool(self.raw & bit)

    @property
    def under_voltage_now(self) -> bool:
        return self._has(ThrottleBit.UNDER_VOLTAGE_NOW)

    @property
    def freq_capped_now(self) -> bool:
        return self._has(ThrottleBit.FREQ_CAPPED_NOW)

    @property
    def throttled_now(self) -> bool:
        return self._has(ThrottleBit.THROTTLED_NOW)

    @property
    def under_voltage_since_boot(self) -> bool:
        return self._has(ThrottleBit.UNDER_VOLTAGE_SINCE_BOOT)

    @property
    def throttled_since_boot(self) -> bool:
        return self._has(ThrottleBit.THROTTLED_SINCE_BOOT)

    @property
    def any_now(self) -> bool:
        return any(self._has(bit) for bit in _NOW_BITS)

    @property
    def any_since_boot(self) -> bool:
        return any(self._has(bit) for bit in _SINCE_BOOT_BITS)

    def active(self) -> List[ThrottleBit]:
        """Asserted flags, in mask order."""
        return [bit for bit in THROTTLE_DESCRIPTIONS if self._has(bit)]

    def __str__(self) -> str:
        return f"0x{self.raw:x}"


class Threshold(BaseModel):
    """Warning and critical levels, in the same unit as the reading."""

    model_config = ConfigDict(frozen=True)

    warning_level: float
    critical_level: float

    @model_validator(mode="after")
    def _check_order(self) -> "Threshold":
        if self.warning_level > self.critical_level:
            raise ValueError(
                f"warning_level ({self.warning_level}) must not exceed "
                f"critical_level ({self.critical_level})"
            )
        return self


def _key(kind: SignalKind, subject: Optional[str]) -> str:
    return f"{kind.value}:{subject}" if subject else kind.value


@dataclass(frozen=True)
class Reading:
    kind: SignalKind
    value: Any
    unit: str
    timestamp: datetime
    source_host: str
    subject: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return _key(self.kind, self.subject)

    def display_value(self) -> str:
        if isinstance(self.value, bool):
            return "yes" if self.value else "no"
        if isinstance(self.value, float):
            return f"{self.value:.1f}{self.unit}"
        return f"{self.value}{self.unit}"


@dataclass(frozen=True)
class Unavailable:
    """A signal that could not be read on this host."""

    kind: SignalKind
    reason: str
    timestamp: datetime
    subject: Optional[str] = None

    @property
    def key(self) -> str:
        return _key(self.kind, self.subject)

    def display_value(self) -> str:
        return "unmonitored"


Sample = Union[Reading, Unavailable]


@dataclass(frozen=True)
class Finding:
    key: str
    kind: SignalKind
    subject: Optional[str]
    severity: Severity
    message: str
    sample: Sample
    unmonitored: bool = False
    issue: Optional[str] = None  # ThresholdBreach, ServiceDown, DnsFailure, ...

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "subject": self.subject,
            "severity": self.severity.label,
            "message": self.message,
            "value": self.sample.display_value(),
            "unmonitored": self.unmonitored,
            "issue": self.issue,
        }


@dataclass(frozen=True)
class AlertEvent:
    key: str
    kind: SignalKind
    previous_severity: Severity
    new_severity: Severity
    message: str
    timestamp: datetime

    @property
    def is_recovery(self) -> bool:
        return self.new_severity < self.previous_severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "previous_severity": self.previous_severity.label,
            "new_severity": self.new_severity.label,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class DispatchResult(str, Enum):
    SENT = "sent"
    LOGGED_ONLY = "logged_only"


class RecoveryAction(str, Enum):
    NONE = "none"
    RESTART_ATTEMPTED = "restart_attempted"


@dataclass(frozen=True)
class ServiceCheckResult:
    service_name: str
    was_active: bool
    action_taken: RecoveryAction = RecoveryAction.NONE
    restart_succeeded: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action_taken"] = self.action_taken.value
        return data


class BackupKind(str, Enum):
    CONFIG = "config"
    FULL_IMAGE = "full_image"


@dataclass(frozen=True)
class BackupRecord:
    id: str
    kind: BackupKind
    path: Path
    size_bytes: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
        }
