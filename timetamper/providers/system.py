"""Host implementation of the system clock provider."""

import locale
import logging
import platform
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..models import DeviceStartupReference, SystemInfo, utcnow
from .base import SystemClockProvider

log = logging.getLogger(__name__)

# Boot time estimates outside this window are reported as unavailable
MAX_BOOT_AGE = timedelta(days=30)
MIN_BOOT_AGE = timedelta(seconds=60)


class HostSystemClock(SystemClockProvider):
    """Reads uptime from the kernel's boot-time clock where available."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._process_start = clock()
        self._process_start_mono = time.monotonic()

    def uptime(self) -> float:
        """Seconds since boot, including time spent suspended on Linux."""
        if hasattr(time, "CLOCK_BOOTTIME"):
            return time.clock_gettime(time.CLOCK_BOOTTIME)
        return time.monotonic()

    def boot_time(self) -> Optional[datetime]:
        """Estimate boot time as now minus uptime."""
        now = self._clock()
        estimated = now - timedelta(seconds=self.uptime())

        if not (now - MAX_BOOT_AGE < estimated < now - MIN_BOOT_AGE):
            log.warning(f"Calculated boot time seems unreasonable: {estimated.isoformat()}")
            return None
        return estimated

    def process_uptime(self) -> float:
        return time.monotonic() - self._process_start_mono

    def system_info(self) -> SystemInfo:
        return SystemInfo(
            boot_time=self.boot_time(),
            uptime=self.uptime(),
            current_time=self._clock(),
            timezone=datetime.now().astimezone().tzname() or "UTC",
            locale=locale.getlocale()[0] or "C",
            device_model=platform.machine() or "unknown",
            system_version=f"{platform.system()} {platform.release()}".strip(),
            process_uptime=self.process_uptime(),
        )

    def startup_reference(self) -> Optional[DeviceStartupReference]:
        boot_time = self.boot_time()
        if boot_time is None:
            return None

        return DeviceStartupReference(
            estimated_boot_time=boot_time,
            process_start_time=self._process_start,
            system_uptime=self.uptime(),
            process_uptime=self.process_uptime(),
            device_model=platform.machine() or "unknown",
            system_version=f"{platform.system()} {platform.release()}".strip(),
            timestamp=self._clock(),
        )
