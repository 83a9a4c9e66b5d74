"""Pytest configuration and shared fixtures."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from timetamper.models import DeviceStartupReference, SystemInfo
from timetamper.providers.base import NetworkTimeProvider, SystemClockProvider
from timetamper.storage import MemoryBackend, TrustedReferenceStore


T0 = datetime(2025, 7, 18, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeNetworkTimeProvider(NetworkTimeProvider):
    """Returns a fixed sample (or None) and records calls."""

    def __init__(self, sample=None):
        self.sample = sample
        self.calls = 0
        self.last_cancel = None

    def fetch(self, cancel=None):
        self.calls += 1
        self.last_cancel = cancel
        return self.sample

    def is_available(self) -> bool:
        return self.sample is not None


class FakeSystemClock(SystemClockProvider):
    """System clock with settable boot time and uptime."""

    def __init__(self, clock: FakeClock, boot_time=None, uptime: float = 3600.0,
                 provide_startup: bool = True):
        self.clock = clock
        self.boot = boot_time
        self.uptime_seconds = uptime
        self.provide_startup = provide_startup

    def boot_time(self):
        return self.boot

    def uptime(self) -> float:
        return self.uptime_seconds

    def system_info(self) -> SystemInfo:
        return SystemInfo(
            boot_time=self.boot,
            uptime=self.uptime_seconds,
            current_time=self.clock(),
            timezone="UTC",
            locale="en_US",
            device_model="test-device",
            system_version="Test 1.0",
            process_uptime=300.0,
        )

    def startup_reference(self):
        if not self.provide_startup or self.boot is None:
            return None
        return DeviceStartupReference(
            estimated_boot_time=self.boot,
            process_start_time=self.clock() - timedelta(seconds=300),
            system_uptime=self.uptime_seconds,
            process_uptime=300.0,
            device_model="test-device",
            system_version="Test 1.0",
            timestamp=self.clock(),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend, clock):
    return TrustedReferenceStore(backend, clock=clock)


@pytest.fixture
def temp_config_file():
    """Create a temporary config file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        config = """
detection:
  max_allowed_drift: 120
  reboot_tolerance: 30

network:
  servers: ["ntp.example.org", "pool.ntp.org"]
  timeout: 4

storage:
  state_file: "/tmp/timetamper-test/state.json"
  reference_cap: 5

history:
  cap: 20

mqtt:
  broker: "localhost"
  port: 1884
  username: "test"
  password: "test"

watch:
  interval: 30
"""
        f.write(config)
        f.flush()
        yield Path(f.name)
