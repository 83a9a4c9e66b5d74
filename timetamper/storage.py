"""Persistence for trusted time references."""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import TrustedReference, utcnow

log = logging.getLogger(__name__)

REFERENCES_KEY = "trusted_references"


class StateBackend(ABC):
    """Key-value store holding JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the value for key, or None. May raise OSError/ValueError."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class JsonFileBackend(StateBackend):
    """All keys live in one JSON object on disk, replaced atomically."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected state file content in {self.path}")
        return data

    def _read_for_update(self) -> Dict[str, Any]:
        try:
            return self._read()
        except ValueError as e:
            log.error(f"Discarding unreadable state file {self.path}: {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_for_update()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_for_update()
            if key in data:
                del data[key]
                self._write(data)


class MemoryBackend(StateBackend):
    """In-process backend; values are copied through JSON like the file backend."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class TrustedReferenceStore:
    """Bounded, TTL-governed list of trusted references, newest first.

    Failures of the backend are logged and never propagated: losing a
    cached reference only lowers the confidence of later offline checks.
    """

    def __init__(
        self,
        backend: StateBackend,
        validity: float = 86400.0,
        capacity: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._backend = backend
        self.validity = validity
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> List[TrustedReference]:
        """Load the persisted list; unreadable content reads as empty."""
        try:
            data = self._backend.get(REFERENCES_KEY)
        except (OSError, ValueError) as e:
            log.error(f"Failed to load trusted references: {e}")
            return []

        if data is None:
            return []

        try:
            return [TrustedReference.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            log.error(f"Malformed trusted references, ignoring: {e}")
            return []

    def _save(self, references: List[TrustedReference]) -> None:
        try:
            self._backend.set(REFERENCES_KEY, [ref.to_dict() for ref in references])
        except (OSError, TypeError, ValueError) as e:
            log.error(f"Failed to save trusted references: {e}")

    def _usable(self, references: List[TrustedReference]) -> List[TrustedReference]:
        now = self._clock()
        return [ref for ref in references if ref.is_usable(now, self.validity)]

    def store(self, reference: TrustedReference) -> None:
        """Insert a reference at the front, then trim to capacity and drop expired ones."""
        with self._lock:
            references = self._load()
            references.insert(0, reference)
            references = references[: self.capacity]
            references = self._usable(references)
            self._save(references)
        log.debug(f"Stored trusted reference ({len(references)} kept)")

    def latest(self) -> Optional[TrustedReference]:
        """Return the newest usable reference, if any."""
        with self._lock:
            references = self._load()
        now = self._clock()
        for ref in references:
            if ref.is_usable(now, self.validity):
                return ref
        return None

    def all(self) -> List[TrustedReference]:
        """Return every usable reference, newest first."""
        with self._lock:
            references = self._load()
        return self._usable(references)

    def clear(self) -> None:
        with self._lock:
            try:
                self._backend.delete(REFERENCES_KEY)
            except (OSError, ValueError) as e:
                log.error(f"Failed to clear trusted references: {e}")
        log.info("Cleared trusted references")
