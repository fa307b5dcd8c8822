"""
Health engine for raspi-health: evaluation, alerting, recovery and backups.
"""

from .alerts import AlertDispatcher
from .backup import BackupManager
from .evaluator import assess, evaluate
from .health_check import (FULL_CHECK_KINDS, TEMPERATURE_CHECK_KINDS,
                           HealthCheckRunner, RunReport)
from .recovery import MAX_RESTARTS_PER_RUN, RecoveryController

__all__ = [
    "AlertDispatcher",
    "BackupManager",
    "HealthCheckRunner",
    "RunReport",
    "RecoveryController",
    "MAX_RESTARTS_PER_RUN",
    "FULL_CHECK_KINDS",
    "TEMPERATURE_CHECK_KINDS",
    "assess",
    "evaluate",
]
