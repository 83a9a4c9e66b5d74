"""Capability providers for the detection engine."""

from .base import NetworkTimeProvider, SystemClockProvider
from .network import NtpTimeProvider
from .system import HostSystemClock


__all__ = [
    "HostSystemClock",
    "NetworkTimeProvider",
    "NtpTimeProvider",
    "SystemClockProvider",
]
