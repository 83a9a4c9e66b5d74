"""Scan history for detection results."""

import json
import logging
import threading
from typing import List, Optional

from .models import DetectionResult
from .storage import StateBackend

log = logging.getLogger(__name__)

HISTORY_KEY = "scan_history"


def status_text(result: Optional[DetectionResult]) -> str:
    """Short human-readable status for a result (or for no scan yet)."""
    if result is None:
        return "Ready to scan"
    return "Time Tampering Detected" if result.is_tampered else "Time Integrity Verified"


class ScanHistory:
    """Bounded list of detection results, newest first."""

    def __init__(self, backend: StateBackend, cap: int = 50):
        self._backend = backend
        self.cap = cap
        self._lock = threading.Lock()
        self._results: List[DetectionResult] = self._load()

    def _load(self) -> List[DetectionResult]:
        """Load persisted history from the backend."""
        try:
            data = self._backend.get(HISTORY_KEY)
        except (OSError, ValueError) as e:
            log.error(f"Failed to load scan history: {e}")
            return []

        if not data:
            return []

        try:
            results = [DetectionResult.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            log.error(f"Malformed scan history, ignoring: {e}")
            return []

        log.debug(f"Loaded {len(results)} scan results")
        return results[: self.cap]

    def _save(self) -> None:
        """Persist history to the backend."""
        try:
            self._backend.set(HISTORY_KEY, [result.to_dict() for result in self._results])
        except (OSError, TypeError, ValueError) as e:
            log.error(f"Failed to save scan history: {e}")

    def add(self, result: DetectionResult) -> None:
        """Record a result at the front, dropping the oldest beyond the cap."""
        with self._lock:
            self._results.insert(0, result)
            del self._results[self.cap:]
            self._save()

    @property
    def results(self) -> List[DetectionResult]:
        with self._lock:
            return list(self._results)

    @property
    def latest(self) -> Optional[DetectionResult]:
        with self._lock:
            return self._results[0] if self._results else None

    @property
    def current_status(self) -> str:
        return status_text(self.latest)

    def __len__(self) -> int:
        return len(self._results)

    def clear(self) -> None:
        """Empty the history and persist the empty state."""
        with self._lock:
            self._results.clear()
            self._save()
        log.info("Cleared scan history")

    def export(self) -> str:
        """Export history as pretty-printed JSON with ISO-8601 timestamps."""
        with self._lock:
            items = [result.to_export() for result in self._results]
        return json.dumps(items, indent=2)
