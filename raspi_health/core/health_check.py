"""
Health check runner: collect, evaluate, then dispatch or recover per signal.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..signals.collector import SignalCollector
from ..signals.models import (
    AlertEvent,
    Finding,
    Reading,
    ServiceCheckResult,
    Severity,
    SignalKind,
)
from ..utils.config import HealthConfig
from .alerts import AlertDispatcher
from .evaluator import assess
from .recovery import RecoveryController

logger = logging.getLogger(__name__)

FULL_CHECK_KINDS = (
    SignalKind.TEMPERATURE,
    SignalKind.THROTTLE,
    SignalKind.VOLTAGE,
    SignalKind.DISK_USAGE,
    SignalKind.SD_CARD_ERRORS,
    SignalKind.SMART_HEALTH,
    SignalKind.NETWORK,
    SignalKind.DNS,
    SignalKind.SERVICE_STATE,
    SignalKind.CONTAINER_STATE,
)
TEMPERATURE_CHECK_KINDS = (
    SignalKind.TEMPERATURE,
    SignalKind.THROTTLE,
    SignalKind.VOLTAGE,
)


@dataclass
class RunReport:
    """Everything one check run found and did."""

    mode: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    findings: List[Finding] = field(default_factory=list)
    service_results: List[ServiceCheckResult] = field(default_factory=list)
    events: List[AlertEvent] = field(default_factory=list)
    dispatch_counts: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity == severity and not f.unmonitored)

    @property
    def unresolved_critical(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == Severity.CRITICAL]

    @property
    def worst_severity(self) -> Severity:
        return max((f.severity for f in self.findings), default=Severity.NORMAL)

    def summary_line(self) -> str:
        return (
            f"SUMMARY {self.mode}: {len(self.findings)} signals, "
            f"{self.count(Severity.WARNING)} warning, "
            f"{self.count(Severity.CRITICAL)} critical, "
            f"{sum(1 for f in self.findings if f.unmonitored)} unmonitored, "
            f"{len(self.events)} alerts "
            f"({self.dispatch_counts.get('sent', 0)} sent, "
            f"{self.dispatch_counts.get('logged_only', 0)} logged only)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "worst_severity": self.worst_severity.label,
            "findings": [f.to_dict() for f in self.findings],
            "service_results": [r.to_dict() for r in self.service_results],
            "events": [e.to_dict() for e in self.events],
            "dispatch": dict(self.dispatch_counts),
            "errors": list(self.errors),
        }


class HealthCheckRunner:
    """Runs one health check over a set of signal kinds."""

    def __init__(
        self,
        config: HealthConfig,
        collector: SignalCollector,
        dispatcher: AlertDispatcher,
        recovery: RecoveryController,
    ):
        self.config = config
        self.collector = collector
        self.dispatcher = dispatcher
        self.recovery = recovery

    def run(self, kinds: Sequence[SignalKind] = FULL_CHECK_KINDS, mode: str = "check") -> RunReport:
        report = RunReport(mode=mode, started_at=datetime.now())

        for kind in kinds:
            try:
                self._check_kind(kind, report)
            except Exception as e:
                # A broken check must not stop the others
                logger.error(f"Check {kind.value} failed: {e}")
                report.errors.append(f"{kind.value}: {e}")

        report.service_results = list(self.recovery.results.values())
        report.events = list(self.dispatcher.events)
        report.dispatch_counts = dict(self.dispatcher.results)
        report.finished_at = datetime.now()
        logger.info(report.summary_line())
        return report

    def _check_kind(self, kind: SignalKind, report: RunReport) -> None:
        threshold = self.config.thresholds.for_kind(kind)
        for sample in self.collector.collect(kind):
            finding = assess(sample, threshold)

            try:
                if (
                    kind == SignalKind.SERVICE_STATE
                    and isinstance(sample, Reading)
                    and finding.severity == Severity.CRITICAL
                ):
                    finding = self._recover(finding)
                else:
                    self.dispatcher.observe(finding)
            except Exception as e:
                # Keep the finding and the rest of this kind's samples
                logger.error(f"Check {finding.key} failed: {e}")
                report.errors.append(f"{finding.key}: {e}")

            self._log_finding(finding)
            report.findings.append(finding)

    def _recover(self, finding: Finding) -> Finding:
        result = self.recovery.ensure_running(finding.subject)

        if result.was_active:
            # Came back between the probe and the recovery check
            severity, message, issue = Severity.NORMAL, f"{finding.subject}: active", None
        elif result.restart_succeeded:
            severity, message, issue = (
                Severity.WARNING,
                f"{finding.subject}: was inactive, restarted",
                "ServiceDown",
            )
        elif result.restart_succeeded is None:
            severity, message, issue = Severity.CRITICAL, finding.message, "ServiceDown"
        else:
            severity, message, issue = (
                Severity.CRITICAL,
                f"{finding.subject}: inactive, restart failed",
                "RestartFailed",
            )

        resolved = Finding(
            key=finding.key,
            kind=finding.kind,
            subject=finding.subject,
            severity=severity,
            message=message,
            sample=finding.sample,
            issue=issue,
        )
        if result.restart_succeeded is None:
            # No restart was attempted, so nothing has been reported yet
            self.dispatcher.observe(resolved)
        return resolved

    def _log_finding(self, finding: Finding) -> None:
        if finding.unmonitored:
            logger.debug(finding.message)
        elif finding.severity == Severity.CRITICAL:
            logger.error(finding.message)
        elif finding.severity == Severity.WARNING:
            logger.warning(finding.message)
        else:
            logger.info(finding.message)
