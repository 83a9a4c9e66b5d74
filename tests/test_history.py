"""Tests for history module."""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from timetamper.history import HISTORY_KEY, ScanHistory, status_text
from timetamper.models import ConfidenceLevel, DetectionMethod, DetectionResult
from timetamper.storage import JsonFileBackend

from conftest import T0


def make_result(index: int = 0, is_tampered: bool = False) -> DetectionResult:
    return DetectionResult(
        is_tampered=is_tampered,
        device_time=T0 + timedelta(seconds=index),
        trusted_time=None,
        boot_time=None,
        detection_method=DetectionMethod.BOOT_TIME_ANALYSIS,
        confidence_level=ConfidenceLevel.LOW,
        message=f"scan {index}",
    )


@pytest.fixture
def history(backend):
    return ScanHistory(backend)


class TestScanHistory:
    """Tests for ScanHistory."""

    def test_starts_empty(self, history):
        """Test a fresh history has no results."""
        assert history.results == []
        assert history.latest is None
        assert history.current_status == "Ready to scan"

    def test_add_newest_first(self, history):
        """Test results are kept newest first."""
        history.add(make_result(1))
        history.add(make_result(2))

        assert [r.message for r in history.results] == ["scan 2", "scan 1"]
        assert history.latest.message == "scan 2"

    def test_cap(self, history):
        """Test 60 results leave the 50 most recent."""
        for i in range(60):
            history.add(make_result(i))

        results = history.results
        assert len(results) == 50
        assert results[0].message == "scan 59"
        assert results[-1].message == "scan 10"

    def test_custom_cap(self, backend):
        """Test the cap is configurable."""
        history = ScanHistory(backend, cap=3)
        for i in range(5):
            history.add(make_result(i))

        assert len(history) == 3

    def test_persists_across_instances(self, tmp_path):
        """Test history survives a restart."""
        path = tmp_path / "state.json"
        ScanHistory(JsonFileBackend(path)).add(make_result(7, is_tampered=True))

        restored = ScanHistory(JsonFileBackend(path))

        assert len(restored) == 1
        assert restored.latest.is_tampered is True
        assert restored.latest.device_time == T0 + timedelta(seconds=7)

    def test_clear_persists_empty_state(self, history, backend):
        """Test clear empties and persists."""
        history.add(make_result())
        history.clear()

        assert history.results == []
        assert backend.get(HISTORY_KEY) == []

    def test_status(self, history):
        """Test status follows the latest result."""
        history.add(make_result(is_tampered=True))
        assert history.current_status == "Time Tampering Detected"

        history.add(make_result())
        assert history.current_status == "Time Integrity Verified"

    def test_malformed_history_ignored(self, backend):
        """Test corrupt persisted history loads as empty."""
        backend.set(HISTORY_KEY, [{"message": "missing fields"}])

        assert ScanHistory(backend).results == []

    def test_unknown_tags_loaded_with_defaults(self, backend):
        """Test persisted entries with unknown tags decode to defaults."""
        data = make_result().to_dict()
        data["detectionMethod"] = "somethingNew"
        data["confidenceLevel"] = "unsure"
        backend.set(HISTORY_KEY, [data])

        result = ScanHistory(backend).latest

        assert result.detection_method is DetectionMethod.BOOT_TIME_ANALYSIS
        assert result.confidence_level is ConfidenceLevel.LOW

    def test_backend_failure_swallowed(self):
        """Test persistence errors do not reach the caller."""
        backend = MagicMock()
        backend.get.side_effect = OSError("read-only")
        backend.set.side_effect = OSError("read-only")

        history = ScanHistory(backend)
        history.add(make_result())

        assert len(history) == 1


class TestExport:
    """Tests for history export."""

    def test_export_format(self, history):
        """Test export fields and encodings."""
        history.add(DetectionResult(
            is_tampered=True,
            device_time=T0,
            trusted_time=T0 - timedelta(minutes=10),
            boot_time=None,
            detection_method=DetectionMethod.NETWORK_SYNC,
            confidence_level=ConfidenceLevel.HIGH,
            message="Time tampering detected! Device time differs by 10 minutes.",
        ))

        items = json.loads(history.export())

        assert items == [{
            "isTampered": True,
            "deviceTime": "2025-07-18T12:00:00+00:00",
            "trustedTime": "2025-07-18T11:50:00+00:00",
            "bootTime": None,
            "detectionMethod": "networkSync",
            "confidenceLevel": "high",
            "message": "Time tampering detected! Device time differs by 10 minutes.",
        }]

    def test_export_empty(self, history):
        """Test exporting no history."""
        assert json.loads(history.export()) == []

    def test_export_is_readable(self, history):
        """Test export is pretty-printed."""
        history.add(make_result())
        assert "\n" in history.export()


class TestStatusText:
    """Tests for status_text."""

    def test_no_result(self):
        """Test text before any scan."""
        assert status_text(None) == "Ready to scan"
