"""Data model for time tamper detection."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Return the current wall clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch(value: datetime) -> float:
    return value.timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class DetectionMethod(Enum):
    """Evidence source that produced a result."""

    NETWORK_SYNC = "networkSync"
    STORED_REFERENCE = "storedReference"
    BOOT_TIME_ANALYSIS = "bootTimeAnalysis"
    COMBINED = "combined"

    @classmethod
    def from_tag(cls, tag: str) -> "DetectionMethod":
        """Map a persisted tag back to a method; unknown tags map to boot time analysis."""
        for method in cls:
            if method.value == tag:
                return method
        return cls.BOOT_TIME_ANALYSIS

    @property
    def tag(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return _METHOD_NAMES[self]


class ConfidenceLevel(Enum):
    """Three-valued trust estimate attached to every result."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_tag(cls, tag: str) -> "ConfidenceLevel":
        """Map a persisted tag back to a level; unknown tags map to low."""
        for level in cls:
            if level.value == tag:
                return level
        return cls.LOW

    @property
    def tag(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return f"{self.value.capitalize()} Confidence"


_METHOD_NAMES = {
    DetectionMethod.NETWORK_SYNC: "Network Synchronization",
    DetectionMethod.STORED_REFERENCE: "Stored Reference",
    DetectionMethod.BOOT_TIME_ANALYSIS: "Boot Time Analysis",
    DetectionMethod.COMBINED: "Combined Analysis",
}


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of a single detection run."""

    is_tampered: bool
    device_time: datetime
    trusted_time: Optional[datetime]
    boot_time: Optional[datetime]
    detection_method: DetectionMethod
    confidence_level: ConfidenceLevel
    message: str

    def to_dict(self) -> dict:
        """Serialize for persistence (timestamps as epoch seconds)."""
        return {
            "isTampered": self.is_tampered,
            "deviceTime": to_epoch(self.device_time),
            "trustedTime": to_epoch(self.trusted_time) if self.trusted_time else None,
            "bootTime": to_epoch(self.boot_time) if self.boot_time else None,
            "detectionMethod": self.detection_method.tag,
            "confidenceLevel": self.confidence_level.tag,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionResult":
        trusted_time = data.get("trustedTime")
        boot_time = data.get("bootTime")
        return cls(
            is_tampered=bool(data["isTampered"]),
            device_time=from_epoch(data["deviceTime"]),
            trusted_time=from_epoch(trusted_time) if trusted_time is not None else None,
            boot_time=from_epoch(boot_time) if boot_time is not None else None,
            detection_method=DetectionMethod.from_tag(data.get("detectionMethod", "")),
            confidence_level=ConfidenceLevel.from_tag(data.get("confidenceLevel", "")),
            message=data.get("message", ""),
        )

    def to_export(self) -> dict:
        """Serialize for user-facing export (timestamps as ISO-8601)."""
        return {
            "isTampered": self.is_tampered,
            "deviceTime": self.device_time.isoformat(),
            "trustedTime": self.trusted_time.isoformat() if self.trusted_time else None,
            "bootTime": self.boot_time.isoformat() if self.boot_time else None,
            "detectionMethod": self.detection_method.tag,
            "confidenceLevel": self.confidence_level.tag,
            "message": self.message,
        }


@dataclass(frozen=True)
class TrustedReference:
    """A previously validated time snapshot kept for offline comparison."""

    timestamp: datetime
    boot_time: datetime
    device_uptime: float
    created_at: datetime
    is_valid: bool = True

    def age_at(self, now: datetime) -> float:
        """Seconds elapsed between creation and ``now``."""
        return (now - self.created_at).total_seconds()

    def is_usable(self, now: datetime, validity: float) -> bool:
        return self.is_valid and self.age_at(now) < validity

    def to_dict(self) -> dict:
        return {
            "timestamp": to_epoch(self.timestamp),
            "bootTime": to_epoch(self.boot_time),
            "deviceUptime": self.device_uptime,
            "createdAt": to_epoch(self.created_at),
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrustedReference":
        return cls(
            timestamp=from_epoch(data["timestamp"]),
            boot_time=from_epoch(data["bootTime"]),
            device_uptime=float(data["deviceUptime"]),
            created_at=from_epoch(data["createdAt"]),
            is_valid=bool(data["isValid"]),
        )


@dataclass(frozen=True)
class NetworkTimeSample:
    """Authoritative time reported by a network source."""

    server_time: datetime
    round_trip_time: float
    is_reliable: bool
    server: str = ""


@dataclass(frozen=True)
class DeviceStartupReference:
    """Boot/uptime snapshot used for the uptime consistency check."""

    estimated_boot_time: datetime
    process_start_time: datetime
    system_uptime: float
    process_uptime: float
    device_model: str
    system_version: str
    timestamp: datetime

    @property
    def is_valid(self) -> bool:
        """Internal consistency: boot time agrees with process start minus uptime."""
        derived = self.process_start_time - timedelta(seconds=self.process_uptime)
        return abs((self.estimated_boot_time - derived).total_seconds()) < 60


@dataclass(frozen=True)
class SystemInfo:
    boot_time: Optional[datetime]
    uptime: float
    current_time: datetime
    timezone: str
    locale: str
    device_model: str
    system_version: str
    process_uptime: float


@dataclass(frozen=True)
class UptimeValidation:
    """Outcome of comparing a stored startup reference with the current one."""

    is_valid: bool
    reason: str
    device_rebooted: bool = False
    uptime_difference: Optional[float] = None
