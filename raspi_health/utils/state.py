"""
Persisted alert state for raspi-health.

Each run is a fresh process, so the last known severity per signal lives in a
small JSON record that is read at run start and atomically replaced at run end.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Set

from ..signals.models import Severity

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class SignalState:
    """Last known severity for one signal key."""
    severity: Severity
    since: str
    message: str = ""

    def to_dict(self) -> Dict:
        return {
            'severity': self.severity.label,
            'since': self.since,
            'message': self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SignalState':
        return cls(
            severity=Severity.from_label(data['severity']),
            since=data.get('since', ''),
            message=data.get('message', ''),
        )


class AlertStateStore:
    """Keyed store of last severity per signal, persisted as JSON."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._signals: Dict[str, SignalState] = {}
        self._unmonitored: Set[str] = set()
        self.updated_at: Optional[str] = None
        self.dirty = False
        self._load()

    def _load(self) -> None:
        """Load state from disk; a missing or unreadable file starts empty."""
        if not self.path.exists():
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read alert state {self.path}, starting fresh: {e}")
            return

        for key, entry in (data.get('signals') or {}).items():
            try:
                self._signals[key] = SignalState.from_dict(entry)
            except (KeyError, TypeError, ValueError):
                # Skip corrupted entries
                logger.debug(f"Dropping unreadable state entry for {key}")
                continue

        self._unmonitored = set(data.get('unmonitored') or [])
        self.updated_at = data.get('updated_at')

    def get(self, key: str) -> Severity:
        """Last known severity; signals never seen before are NORMAL."""
        entry = self._signals.get(key)
        return entry.severity if entry else Severity.NORMAL

    def entries(self) -> Dict[str, SignalState]:
        return dict(self._signals)

    def set(self, key: str, severity: Severity, message: str = "") -> None:
        current = self._signals.get(key)
        if current and current.severity == severity:
            return
        if severity == Severity.NORMAL:
            # NORMAL is the implicit default, no need to keep it around
            self._signals.pop(key, None)
        else:
            self._signals[key] = SignalState(
                severity=severity,
                since=datetime.now().isoformat(timespec='seconds'),
                message=message,
            )
        self.dirty = True

    def mark_unmonitored(self, key: str) -> bool:
        """Record that a signal has no sensor; True the first time only."""
        if key in self._unmonitored:
            return False
        self._unmonitored.add(key)
        self.dirty = True
        return True

    def clear_unmonitored(self, key: str) -> None:
        if key in self._unmonitored:
            self._unmonitored.discard(key)
            self.dirty = True

    def is_unmonitored(self, key: str) -> bool:
        return key in self._unmonitored

    def save(self) -> None:
        """Atomically replace the state file (write temp, fsync, rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.updated_at = datetime.now().isoformat(timespec='seconds')
        payload = {
            'version': STATE_VERSION,
            'updated_at': self.updated_at,
            'signals': {key: entry.to_dict() for key, entry in sorted(self._signals.items())},
            'unmonitored': sorted(self._unmonitored),
        }

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self.dirty = False
