"""
Tests for persisted alert state and the run lock.
"""

import json
import os

import pytest

from raspi_health.signals.models import Severity
from raspi_health.utils.errors import LockHeldError
from raspi_health.utils.lock import RunLock
from raspi_health.utils.state import AlertStateStore


class TestAlertStateStore:
    """JSON state record."""

    def test_missing_file_starts_empty(self, tmp_path):
        store = AlertStateStore(tmp_path / "state.json")
        assert store.entries() == {}
        assert store.get("temperature") == Severity.NORMAL

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        store = AlertStateStore(path)
        store.set("disk_usage:/", Severity.WARNING, "disk usage /: 91.0%")
        store.mark_unmonitored("smart_health")
        store.save()

        reloaded = AlertStateStore(path)
        assert reloaded.get("disk_usage:/") == Severity.WARNING
        assert reloaded.entries()["disk_usage:/"].message == "disk usage /: 91.0%"
        assert reloaded.is_unmonitored("smart_health")
        assert reloaded.updated_at is not None

        data = json.loads(path.read_text())
        assert data["signals"]["disk_usage:/"]["severity"] == "warning"

    def test_normal_is_not_stored(self, tmp_path):
        store = AlertStateStore(tmp_path / "state.json")
        store.set("temperature", Severity.CRITICAL)
        store.set("temperature", Severity.NORMAL)
        assert "temperature" not in store.entries()

    def test_unchanged_set_keeps_since(self, tmp_path):
        store = AlertStateStore(tmp_path / "state.json")
        store.set("temperature", Severity.CRITICAL, "hot")
        since = store.entries()["temperature"].since
        store.dirty = False
        store.set("temperature", Severity.CRITICAL, "still hot")
        assert store.entries()["temperature"].since == since
        assert not store.dirty

    def test_corrupt_file_treated_as_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = AlertStateStore(path)
        assert store.entries() == {}

    def test_bad_entry_skipped(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "signals": {
                "temperature": {"severity": "critical", "since": "2024-01-01T00:00:00"},
                "voltage:core": {"severity": "purple"},
            }
        }))
        store = AlertStateStore(path)
        assert list(store.entries()) == ["temperature"]

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = AlertStateStore(tmp_path / "state.json")
        store.set("temperature", Severity.WARNING)
        store.save()
        store.save()
        assert sorted(os.listdir(tmp_path)) == ["state.json"]


class TestRunLock:
    """Exclusive, non-blocking run lock."""

    def test_second_holder_rejected(self, tmp_path):
        path = tmp_path / "run" / "raspi-health.lock"
        with RunLock(path):
            with pytest.raises(LockHeldError) as excinfo:
                RunLock(path).acquire()
        assert excinfo.value.holder_pid == os.getpid()
        assert excinfo.value.exit_code == 75

    def test_released_on_exit(self, tmp_path):
        path = tmp_path / "raspi-health.lock"
        with RunLock(path) as lock:
            assert lock.held
        assert not lock.held

        second = RunLock(path)
        second.acquire()
        assert second.held
        second.release()

    def test_released_on_error(self, tmp_path):
        path = tmp_path / "raspi-health.lock"
        with pytest.raises(RuntimeError):
            with RunLock(path):
                raise RuntimeError("boom")
        with RunLock(path) as lock:
            assert lock.held
