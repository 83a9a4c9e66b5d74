"""Abstract capability interfaces consumed by the detection engine."""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..models import DeviceStartupReference, NetworkTimeSample, SystemInfo


class NetworkTimeProvider(ABC):
    """Source of authoritative network time."""

    @abstractmethod
    def fetch(
        self, cancel: Optional[threading.Event] = None
    ) -> Optional[NetworkTimeSample]:
        """Fetch authoritative time.

        Args:
            cancel: Optional event; once set, no further servers are tried

        Returns:
            A sample from the first server that answered, or None when
            unavailable (offline, every server failed, or cancelled)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if the network looks reachable."""
        pass


class SystemClockProvider(ABC):
    """Source of boot time, uptime and device identity."""

    @abstractmethod
    def boot_time(self) -> Optional[datetime]:
        """Estimated boot time, or None if implausible or unobtainable."""
        pass

    @abstractmethod
    def uptime(self) -> float:
        """Seconds since boot from a monotonic counter."""
        pass

    @abstractmethod
    def system_info(self) -> SystemInfo:
        """Snapshot of clock and device details."""
        pass

    @abstractmethod
    def startup_reference(self) -> Optional[DeviceStartupReference]:
        """Current startup reference, or None if boot time is unavailable."""
        pass
