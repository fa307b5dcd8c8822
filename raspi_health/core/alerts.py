"""
Alert dispatcher.

Tracks the last severity per signal key and raises an ``AlertEvent`` only when
it changes. Every event lands in the health log; delivery to a notification
channel is best effort.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..signals.models import (
    AlertEvent,
    DispatchResult,
    Finding,
    Severity,
    SignalKind,
)
from ..utils.errors import NotificationError
from ..utils.state import AlertStateStore
from .notifier import NotificationSink

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.NORMAL: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


def transition_message(finding: Finding, previous: Severity) -> str:
    new = finding.severity
    if new == Severity.NORMAL:
        return f"RECOVERED: {finding.message} (was {previous.label})"
    if new < previous:
        return f"IMPROVED to {new.label}: {finding.message} (was {previous.label})"
    return f"{new.label.upper()}: {finding.message}"


class AlertDispatcher:
    """Severity state machine per signal key plus alert delivery."""

    def __init__(
        self,
        store: AlertStateStore,
        sink: Optional[NotificationSink] = None,
        subject_prefix: str = "Raspberry Pi",
        dry_run: bool = False,
    ):
        self.store = store
        self.sink = sink
        self.subject_prefix = subject_prefix
        self.dry_run = dry_run
        self.events: List[AlertEvent] = []
        self.results: Dict[str, int] = {r.value: 0 for r in DispatchResult}
        self._channel_failure_logged = False

    def observe(self, finding: Finding) -> Optional[AlertEvent]:
        """
        Feed one evaluated finding through the state machine.

        Returns the event fired, or None when the severity did not change.
        """
        if finding.unmonitored:
            if self.store.mark_unmonitored(finding.key):
                logger.info(f"Not monitored on this host: {finding.message}")
            return None
        self.store.clear_unmonitored(finding.key)

        previous = self.store.get(finding.key)
        if finding.severity == previous:
            return None

        event = AlertEvent(
            key=finding.key,
            kind=finding.kind,
            previous_severity=previous,
            new_severity=finding.severity,
            message=transition_message(finding, previous),
            timestamp=datetime.now(),
        )
        self.store.set(finding.key, finding.severity, finding.message)
        self.dispatch(event)
        return event

    def escalate(
        self, key: str, kind: SignalKind, severity: Severity, message: str
    ) -> AlertEvent:
        """Record an event regardless of the previous state (used by recovery)."""
        event = AlertEvent(
            key=key,
            kind=kind,
            previous_severity=self.store.get(key),
            new_severity=severity,
            message=message,
            timestamp=datetime.now(),
        )
        self.store.set(key, severity, message)
        self.dispatch(event)
        return event

    def dispatch(self, event: AlertEvent) -> DispatchResult:
        """Log the event durably, then try the notification channel."""
        self.events.append(event)
        logger.log(
            _LOG_LEVELS[event.new_severity],
            f"ALERT [{event.new_severity.label}] {event.key}: {event.message}",
        )

        result = self._deliver(event)
        self.results[result.value] += 1
        return result

    def _deliver(self, event: AlertEvent) -> DispatchResult:
        if self.sink is None:
            logger.debug("No notification channel configured, alert logged only")
            return DispatchResult.LOGGED_ONLY
        if self.dry_run:
            logger.info(f"[dry-run] Would notify via {self.sink.name}: {event.message}")
            return DispatchResult.LOGGED_ONLY

        subject = f"{self.subject_prefix} {event.new_severity.label.upper()}: {event.kind.value}"
        if event.is_recovery:
            subject = f"{self.subject_prefix} recovered: {event.kind.value}"

        try:
            failed_channels = self.sink.send(subject, event.message, event.new_severity.label)
        except NotificationError as e:
            self._channel_failed(
                f"Notification channel {self.sink.name} failed, alerts for this run are logged only: {e}"
            )
            return DispatchResult.LOGGED_ONLY
        except Exception as e:
            self._channel_failed(
                f"Notification channel {self.sink.name} raised {type(e).__name__}, "
                f"alerts for this run are logged only: {e}"
            )
            return DispatchResult.LOGGED_ONLY

        if failed_channels:
            self._channel_failed(f"Notification channel failed: {'; '.join(failed_channels)}")
        logger.info(f"Alert sent: {subject}")
        return DispatchResult.SENT

    def _channel_failed(self, message: str) -> None:
        """Warn about a broken channel once per run."""
        if self._channel_failure_logged:
            return
        logger.warning(message)
        self._channel_failure_logged = True
