"""
Recovery controller for inactive systemd units.

One restart attempt per unit per run. Repeated attempts come from the
scheduler's cadence, never from a retry loop here.
"""

import logging
from typing import Dict

from ..signals.models import (
    RecoveryAction,
    ServiceCheckResult,
    Severity,
    SignalKind,
)
from ..utils.errors import HealthError, RestartFailedError, ServiceDownError
from ..utils.system import ServiceManager
from .alerts import AlertDispatcher

logger = logging.getLogger(__name__)

MAX_RESTARTS_PER_RUN = 1


class RecoveryController:
    """Restarts inactive units once and reports the outcome as an alert."""

    def __init__(
        self,
        services: ServiceManager,
        dispatcher: AlertDispatcher,
        dry_run: bool = False,
    ):
        self.services = services
        self.dispatcher = dispatcher
        self.dry_run = dry_run
        self._results: Dict[str, ServiceCheckResult] = {}
        self._attempts: Dict[str, int] = {}

    @property
    def results(self) -> Dict[str, ServiceCheckResult]:
        return dict(self._results)

    def ensure_running(self, service_name: str) -> ServiceCheckResult:
        """Check a unit and restart it once if it is inactive."""
        if service_name in self._results:
            return self._results[service_name]

        if self.services.is_active(service_name):
            result = ServiceCheckResult(service_name=service_name, was_active=True)
            self._results[service_name] = result
            return result

        logger.error(f"{service_name}: INACTIVE")

        if self.dry_run:
            logger.info(f"[dry-run] Would restart {service_name}")
            result = ServiceCheckResult(service_name=service_name, was_active=False)
            self._results[service_name] = result
            return result

        succeeded = self._restart_once(service_name)
        result = ServiceCheckResult(
            service_name=service_name,
            was_active=False,
            action_taken=RecoveryAction.RESTART_ATTEMPTED,
            restart_succeeded=succeeded,
        )
        self._results[service_name] = result

        key = f"{SignalKind.SERVICE_STATE.value}:{service_name}"
        if succeeded:
            logger.info(f"{service_name} restarted successfully")
            self.dispatcher.escalate(
                key,
                SignalKind.SERVICE_STATE,
                Severity.WARNING,
                f"{service_name} was down and has been automatically restarted; check why it stopped",
            )
        else:
            logger.error(f"Failed to restart {service_name}")
            self.dispatcher.escalate(
                key,
                SignalKind.SERVICE_STATE,
                Severity.CRITICAL,
                f"{service_name} is down and could not be restarted",
            )
        return result

    def _restart_once(self, service_name: str) -> bool:
        attempts = self._attempts.get(service_name, 0)
        if attempts >= MAX_RESTARTS_PER_RUN:
            return False
        self._attempts[service_name] = attempts + 1

        logger.info(f"Attempting to restart {service_name}...")
        try:
            if not self.services.restart(service_name):
                raise RestartFailedError(f"systemctl restart {service_name} failed")
            if not self.services.is_active(service_name):
                raise ServiceDownError(f"{service_name} did not stay active after restart")
        except HealthError as e:
            logger.debug(str(e))
            return False
        return True
