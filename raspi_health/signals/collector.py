"""
Signal collector: query host sensors and services and return typed readings.

``collect`` never raises. A missing sensor, tool or permission becomes an
``Unavailable`` sample so the rest of the run carries on.
"""

from __future__ import annotations

import logging
import re
import socket
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil

from ..utils.config import HealthConfig
from ..utils.errors import (
    CommandUnavailableError,
    DnsFailureError,
    NetworkUnreachableError,
    SensorUnavailableError,
)
from ..utils.system import CommandRunner, ContainerRuntime, ServiceManager
from .models import (
    THROTTLE_DESCRIPTIONS,
    Reading,
    Sample,
    SignalKind,
    ThrottleFlags,
    Unavailable,
)

logger = logging.getLogger(__name__)

THERMAL_ZONE_PATHS = [
    Path("/sys/class/thermal/thermal_zone0/temp"),
    Path("/sys/devices/virtual/thermal/thermal_zone0/temp"),
]
VOLTAGE_RAILS = ["core", "sdram_c", "sdram_i", "sdram_p"]

_TEMP_RE = re.compile(r"temp=([-\d.]+)")
_VOLT_RE = re.compile(r"volt=([\d.]+)V")
_SD_ERROR_RE = re.compile(r"(mmc|sd)", re.IGNORECASE)
_FAILURE_RE = re.compile(r"(error|fail)", re.IGNORECASE)


class SignalCollector:
    """Collects readings for each ``SignalKind``."""

    def __init__(
        self,
        config: HealthConfig,
        runner: Optional[CommandRunner] = None,
        services: Optional[ServiceManager] = None,
        containers: Optional[ContainerRuntime] = None,
        hostname: Optional[str] = None,
        thermal_paths: Optional[List[Path]] = None,
    ):
        self.config = config
        self.runner = runner or CommandRunner()
        self.services = services or ServiceManager(self.runner)
        self.containers = containers or ContainerRuntime(self.runner)
        self.hostname = hostname or socket.gethostname()
        self.thermal_paths = thermal_paths or THERMAL_ZONE_PATHS

        self._collectors: Dict[SignalKind, Callable[[], List[Sample]]] = {
            SignalKind.TEMPERATURE: self._collect_temperature,
            SignalKind.THROTTLE: self._collect_throttle,
            SignalKind.VOLTAGE: self._collect_voltage,
            SignalKind.DISK_USAGE: self._collect_disk_usage,
            SignalKind.SD_CARD_ERRORS: self._collect_sd_card_errors,
            SignalKind.SMART_HEALTH: self._collect_smart_health,
            SignalKind.SERVICE_STATE: self._collect_service_state,
            SignalKind.CONTAINER_STATE: self._collect_container_state,
            SignalKind.NETWORK: self._collect_network,
            SignalKind.DNS: self._collect_dns,
        }

    def collect(self, kind: SignalKind) -> List[Sample]:
        """
        Collect one signal kind.

        Returns one sample per subject (mount point, rail, unit, disk);
        single-subject kinds return a one-element list.
        """
        try:
            samples = self._collectors[kind]()
        except SensorUnavailableError as e:
            logger.debug(f"{kind.value} unavailable: {e}")
            samples = [self._unavailable(kind, str(e))]
        except Exception as e:
            logger.warning(f"Could not collect {kind.value}: {e}")
            samples = [self._unavailable(kind, f"collection error: {e}")]

        return samples or [self._unavailable(kind, "no data")]

    def _reading(self, kind: SignalKind, value, unit: str = "", subject=None, **details) -> Reading:
        return Reading(
            kind=kind,
            value=value,
            unit=unit,
            timestamp=datetime.now(),
            source_host=self.hostname,
            subject=subject,
            details=details,
        )

    def _unavailable(self, kind: SignalKind, reason: str, subject=None) -> Unavailable:
        return Unavailable(kind=kind, reason=reason, timestamp=datetime.now(), subject=subject)

    def _vcgencmd(self, *args: str) -> str:
        if not self.runner.which("vcgencmd"):
            raise CommandUnavailableError("vcgencmd")
        result = self.runner.run(["vcgencmd", *args], timeout=5)
        if not result.ok:
            raise SensorUnavailableError(f"vcgencmd {' '.join(args)} failed")
        return result.stdout.strip()

    # --- Hardware ---

    def _collect_temperature(self) -> List[Sample]:
        try:
            output = self._vcgencmd("measure_temp")
            match = _TEMP_RE.search(output)
            if match:
                return [self._reading(SignalKind.TEMPERATURE, float(match.group(1)), "°C")]
        except SensorUnavailableError:
            pass

        for path in self.thermal_paths:
            try:
                millidegrees = int(Path(path).read_text().strip())
            except (OSError, ValueError):
                continue
            return [
                self._reading(
                    SignalKind.TEMPERATURE, round(millidegrees / 1000, 1), "°C", source=str(path)
                )
            ]

        raise SensorUnavailableError("No temperature sensor available")

    def _collect_throttle(self) -> List[Sample]:
        flags = ThrottleFlags.parse(self._vcgencmd("get_throttled"))
        for bit in flags.active():
            logger.warning(f"Throttle flag set: {THROTTLE_DESCRIPTIONS[bit]}")
        return [self._reading(SignalKind.THROTTLE, flags, raw=str(flags))]

    def _collect_voltage(self) -> List[Sample]:
        if not self.runner.which("vcgencmd"):
            raise CommandUnavailableError("vcgencmd")

        readings = []
        for rail in VOLTAGE_RAILS:
            try:
                match = _VOLT_RE.search(self._vcgencmd("measure_volts", rail))
            except SensorUnavailableError:
                continue
            if match:
                readings.append(
                    self._reading(SignalKind.VOLTAGE, float(match.group(1)), "V", subject=rail)
                )
        return readings

    # --- Storage ---

    def _collect_disk_usage(self) -> List[Sample]:
        readings = []
        for partition in psutil.disk_partitions(all=False):
            if not partition.device.startswith("/dev/"):
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError) as e:
                logger.debug(f"Cannot access {partition.mountpoint}: {e}")
                continue
            readings.append(
                self._reading(
                    SignalKind.DISK_USAGE,
                    float(usage.percent),
                    "%",
                    subject=partition.mountpoint,
                    device=partition.device,
                    free_bytes=usage.free,
                )
            )
        return readings

    def _collect_sd_card_errors(self) -> List[Sample]:
        result = self.runner.run(["dmesg"], timeout=10)
        if not result.ok:
            raise SensorUnavailableError("dmesg is not readable (needs root?)")
        errors = [
            line
            for line in result.stdout.splitlines()
            if _SD_ERROR_RE.search(line) and _FAILURE_RE.search(line)
        ]
        return [self._reading(SignalKind.SD_CARD_ERRORS, len(errors), "", recent=errors[-5:])]

    def _collect_smart_health(self) -> List[Sample]:
        if not self.runner.which("smartctl"):
            raise CommandUnavailableError("smartctl")

        lsblk = self.runner.run(["lsblk", "-dn", "-o", "NAME,TYPE"], timeout=10)
        if not lsblk.ok:
            raise SensorUnavailableError("lsblk failed")

        disks = [
            parts[0]
            for parts in (line.split() for line in lsblk.stdout.splitlines())
            if len(parts) >= 2 and parts[1] == "disk"
        ]
        samples: List[Sample] = []
        for disk in disks:
            device = f"/dev/{disk}"
            result = self.runner.run(["smartctl", "-H", device], timeout=30)
            output = result.stdout
            if "PASSED" in output or "SMART Health Status: OK" in output:
                samples.append(self._reading(SignalKind.SMART_HEALTH, True, subject=device))
            elif "FAILED" in output:
                samples.append(self._reading(SignalKind.SMART_HEALTH, False, subject=device))
            else:
                # Most SD cards and USB bridges don't expose SMART
                samples.append(
                    self._unavailable(SignalKind.SMART_HEALTH, "SMART not supported", subject=device)
                )
        return samples

    # --- Services ---

    def _collect_service_state(self) -> List[Sample]:
        samples: List[Sample] = []
        for unit in self.config.services:
            if not self.services.is_installed(unit):
                samples.append(
                    self._unavailable(SignalKind.SERVICE_STATE, "unit not installed", subject=unit)
                )
                continue
            active = self.services.is_active(unit)
            samples.append(self._reading(SignalKind.SERVICE_STATE, active, subject=unit))
        return samples

    def _collect_container_state(self) -> List[Sample]:
        exited = self.containers.exited_containers()
        if exited:
            logger.warning(f"Exited containers: {', '.join(exited)}")
        return [self._reading(SignalKind.CONTAINER_STATE, len(exited), "", exited=exited)]

    # --- Network ---

    def _ping(self, target: str) -> None:
        timeout = self.config.network.probe_timeout_seconds
        result = self.runner.run(
            ["ping", "-c", "1", "-W", str(max(1, int(timeout))), target],
            timeout=timeout + 1,
        )
        if not result.ok:
            raise NetworkUnreachableError(f"Cannot reach {target}")

    def _collect_network(self) -> List[Sample]:
        outcomes: Dict[str, bool] = {}
        for target in self.config.network.ping_targets:
            try:
                self._ping(target)
                outcomes[target] = True
                logger.debug(f"Connectivity to {target}: OK")
            except NetworkUnreachableError as e:
                # One failing endpoint is not an outage on its own
                outcomes[target] = False
                logger.info(str(e))

        reachable = any(outcomes.values())
        if not reachable:
            logger.error("No external connectivity detected")
        return [self._reading(SignalKind.NETWORK, reachable, targets=outcomes)]

    def _resolve(self, host: str) -> List[str]:
        timeout = self.config.network.probe_timeout_seconds
        result = self.runner.run(["getent", "hosts", host], timeout=timeout)
        if not result.ok:
            raise DnsFailureError(f"Could not resolve {host}")
        return [line.split()[0] for line in result.stdout.splitlines() if line.strip()]

    def _collect_dns(self) -> List[Sample]:
        host = self.config.network.dns_probe_host
        try:
            addresses = self._resolve(host)
        except DnsFailureError as e:
            logger.warning(str(e))
            return [self._reading(SignalKind.DNS, False, subject=host, addresses=[])]
        return [self._reading(SignalKind.DNS, True, subject=host, addresses=addresses)]
