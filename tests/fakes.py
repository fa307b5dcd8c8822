"""
Stand-ins for host tools used across the test suite.
"""

from datetime import datetime

from raspi_health.signals.models import (
    Reading,
    SignalKind,
    ThrottleFlags,
    Unavailable,
)
from raspi_health.utils.errors import NotificationError
from raspi_health.utils.system import CommandResult


class FakeRunner:
    """CommandRunner replacement keyed by the joined command line."""

    def __init__(self, responses=None, available=("vcgencmd",)):
        self.responses = dict(responses or {})
        self.available = set(available)
        self.calls = []

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.available else None

    def run(self, args, timeout=None, input_text=None):
        self.calls.append((list(args), input_text))
        response = self.responses.get(" ".join(args))
        if response is None:
            return CommandResult(args=args, returncode=1, stderr="not found")
        if isinstance(response, BaseException):
            raise response
        returncode, stdout = response
        return CommandResult(args=args, returncode=returncode, stdout=stdout)


class FakeServices:
    """ServiceManager replacement with an in-memory set of active units."""

    def __init__(self, active=(), restart_ok=True, restart_brings_up=True):
        self.active = set(active)
        self.restart_ok = restart_ok
        self.restart_brings_up = restart_brings_up
        self.restarts = []

    def is_installed(self, unit):
        return True

    def is_active(self, unit):
        return unit in self.active

    def restart(self, unit):
        self.restarts.append(unit)
        if self.restart_ok and self.restart_brings_up:
            self.active.add(unit)
        return self.restart_ok


class FakeCollector:
    """SignalCollector replacement returning canned samples per kind."""

    def __init__(self, samples=None):
        self.samples = healthy_samples()
        self.samples.update(samples or {})
        self.collected = []

    def collect(self, kind):
        self.collected.append(kind)
        return list(self.samples.get(kind, []))


class RecordingSink:
    name = "recording"

    def __init__(self):
        self.sent = []

    def send(self, subject, message, severity):
        self.sent.append((subject, message, severity))


class FailingSink:
    name = "failing"

    def __init__(self):
        self.attempts = 0

    def send(self, subject, message, severity):
        self.attempts += 1
        raise NotificationError("connection refused")


def make_reading(kind, value, unit="", subject=None, **details):
    return Reading(
        kind=kind,
        value=value,
        unit=unit,
        timestamp=datetime(2024, 1, 1, 12, 0, 0),
        source_host="testpi",
        subject=subject,
        details=details,
    )


def make_unavailable(kind, reason="not present", subject=None):
    return Unavailable(
        kind=kind, reason=reason, timestamp=datetime(2024, 1, 1, 12, 0, 0), subject=subject
    )


def healthy_samples():
    return {
        SignalKind.TEMPERATURE: [make_reading(SignalKind.TEMPERATURE, 45.0, "°C")],
        SignalKind.THROTTLE: [make_reading(SignalKind.THROTTLE, ThrottleFlags(0))],
        SignalKind.VOLTAGE: [make_reading(SignalKind.VOLTAGE, 1.2, "V", subject="core")],
        SignalKind.DISK_USAGE: [make_reading(SignalKind.DISK_USAGE, 40.0, "%", subject="/")],
        SignalKind.SD_CARD_ERRORS: [make_reading(SignalKind.SD_CARD_ERRORS, 0)],
        SignalKind.SMART_HEALTH: [make_unavailable(SignalKind.SMART_HEALTH, "smartctl missing")],
        SignalKind.NETWORK: [
            make_reading(SignalKind.NETWORK, True, targets={"8.8.8.8": True, "1.1.1.1": True})
        ],
        SignalKind.DNS: [make_reading(SignalKind.DNS, True, subject="google.com", addresses=[])],
        SignalKind.SERVICE_STATE: [make_reading(SignalKind.SERVICE_STATE, True, subject="ssh.service")],
        SignalKind.CONTAINER_STATE: [make_reading(SignalKind.CONTAINER_STATE, 0, exited=[])],
    }
