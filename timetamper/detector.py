"""Clock tamper detection engine."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import DetectionConfig
from .models import (
    ConfidenceLevel,
    DetectionMethod,
    DetectionResult,
    DeviceStartupReference,
    NetworkTimeSample,
    TrustedReference,
    UptimeValidation,
    utcnow,
)
from .providers.base import NetworkTimeProvider, SystemClockProvider
from .storage import TrustedReferenceStore

log = logging.getLogger(__name__)

# Round trip bands for network confidence (seconds)
HIGH_CONFIDENCE_ROUND_TRIP = 2.0
MEDIUM_CONFIDENCE_ROUND_TRIP = 5.0

# Reference age bands for stored reference confidence (seconds)
HIGH_CONFIDENCE_AGE = 3600.0
MEDIUM_CONFIDENCE_AGE = 86400.0


def validate_uptime_consistency(
    previous: DeviceStartupReference,
    current: DeviceStartupReference,
    now: datetime,
    reboot_tolerance: float = 60.0,
    uptime_tolerance: float = 300.0,
) -> UptimeValidation:
    """Check that uptime advanced in step with wall clock since ``previous``.

    A boot time shift beyond ``reboot_tolerance`` means the device restarted,
    which makes the uptime comparison meaningless but is not tampering.
    """
    boot_difference = abs(
        (current.estimated_boot_time - previous.estimated_boot_time).total_seconds()
    )
    if boot_difference > reboot_tolerance:
        return UptimeValidation(
            is_valid=True,
            reason="Device was rebooted since last reference",
            device_rebooted=True,
        )

    elapsed = (now - previous.timestamp).total_seconds()
    expected_uptime = previous.system_uptime + elapsed
    uptime_difference = abs(current.system_uptime - expected_uptime)
    is_valid = uptime_difference <= uptime_tolerance

    return UptimeValidation(
        is_valid=is_valid,
        reason="Uptime progression is consistent" if is_valid else "Uptime inconsistency detected",
        device_rebooted=False,
        uptime_difference=uptime_difference,
    )


class TamperDetector:
    """Detects clock tampering from network, stored reference and boot time evidence.

    Evidence tiers are tried in order and the first one that can decide
    wins. Every path ends in a result; missing evidence lowers confidence
    instead of raising.
    """

    def __init__(
        self,
        network: NetworkTimeProvider,
        system: SystemClockProvider,
        store: TrustedReferenceStore,
        config: Optional[DetectionConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.network = network
        self.system = system
        self.store = store
        self.config = config or DetectionConfig()
        self._clock = clock

    def detect_tampering(self, cancel: Optional[threading.Event] = None) -> DetectionResult:
        """Run one detection.

        Args:
            cancel: Optional event that abandons the network fetch when set

        Returns:
            The result of the first evidence tier able to decide.
        """
        # Sample wall clock and uptime together, before the network fetch
        device_time = self._clock()
        uptime = self._read_uptime()
        current = self._read_startup_reference()
        boot_time = self.get_system_boot_time()

        tiers = (
            lambda: self._check_network(device_time, boot_time, uptime, cancel),
            lambda: self._check_stored_reference(device_time, boot_time, current),
        )
        for tier in tiers:
            result = tier()
            if result is not None:
                self._log_result(result)
                return result

        result = self._boot_time_only(device_time, boot_time)
        self._log_result(result)
        return result

    def validate_time_integrity(self, cancel: Optional[threading.Event] = None) -> bool:
        """Return False only for tamper findings above low confidence."""
        result = self.detect_tampering(cancel)
        return not result.is_tampered or result.confidence_level == ConfidenceLevel.LOW

    def get_system_boot_time(self) -> Optional[datetime]:
        try:
            return self.system.boot_time()
        except Exception as e:
            log.error(f"Failed to read boot time: {e}")
            return None

    def get_trusted_network_time(
        self, cancel: Optional[threading.Event] = None
    ) -> Optional[NetworkTimeSample]:
        try:
            return self.network.fetch(cancel)
        except Exception as e:
            log.error(f"Network time fetch failed: {e}")
            return None

    def _read_uptime(self) -> Optional[float]:
        try:
            return self.system.uptime()
        except Exception as e:
            log.error(f"Failed to read uptime: {e}")
            return None

    def _read_startup_reference(self) -> Optional[DeviceStartupReference]:
        try:
            return self.system.startup_reference()
        except Exception as e:
            log.error(f"Failed to read startup reference: {e}")
            return None

    # Tier 1: authoritative network time

    def _check_network(
        self,
        device_time: datetime,
        boot_time: Optional[datetime],
        uptime: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[DetectionResult]:
        sample = self.get_trusted_network_time(cancel)
        if sample is None:
            log.info("Network time unavailable, falling back to stored reference")
            return None

        drift = abs((device_time - sample.server_time).total_seconds())
        is_tampered = drift > self.config.max_allowed_drift

        if sample.is_reliable and sample.round_trip_time < HIGH_CONFIDENCE_ROUND_TRIP:
            confidence = ConfidenceLevel.HIGH
        elif sample.round_trip_time < MEDIUM_CONFIDENCE_ROUND_TRIP:
            confidence = ConfidenceLevel.MEDIUM
        else:
            confidence = ConfidenceLevel.LOW

        result = DetectionResult(
            is_tampered=is_tampered,
            device_time=device_time,
            trusted_time=sample.server_time,
            boot_time=boot_time,
            detection_method=DetectionMethod.NETWORK_SYNC,
            confidence_level=confidence,
            message=self._message(is_tampered, drift),
        )

        if sample.is_reliable and not is_tampered:
            self._store_reference(device_time, boot_time, uptime)

        return result

    def _store_reference(
        self,
        device_time: datetime,
        boot_time: Optional[datetime],
        uptime: Optional[float],
    ) -> None:
        if uptime is None:
            log.warning("Uptime unknown, not storing reference")
            return

        self.store.store(TrustedReference(
            timestamp=device_time,
            boot_time=boot_time or device_time,
            device_uptime=uptime,
            created_at=device_time,
            is_valid=True,
        ))

    # Tier 2: stored reference with uptime cross-check

    def _check_stored_reference(
        self,
        device_time: datetime,
        boot_time: Optional[datetime],
        current: Optional[DeviceStartupReference],
    ) -> Optional[DetectionResult]:
        reference = self.store.latest()
        if reference is None:
            log.info("No usable stored reference")
            return None

        if not reference.is_valid:
            return self._low_confidence(
                device_time, boot_time, DetectionMethod.STORED_REFERENCE,
                "Stored reference is invalid",
            )

        validation = self._validate_uptime(reference, current)
        if validation is not None:
            if validation.device_rebooted:
                return self._low_confidence(
                    device_time, boot_time, DetectionMethod.STORED_REFERENCE,
                    "Device rebooted since last reference",
                )
            if not validation.is_valid:
                return DetectionResult(
                    is_tampered=True,
                    device_time=device_time,
                    trusted_time=None,
                    boot_time=boot_time,
                    detection_method=DetectionMethod.STORED_REFERENCE,
                    confidence_level=ConfidenceLevel.HIGH,
                    message=f"Uptime inconsistency detected: {validation.reason}",
                )

        age = reference.age_at(device_time)
        expected_time = reference.timestamp + timedelta(seconds=age)
        drift = abs((device_time - expected_time).total_seconds())
        is_tampered = drift > self.config.max_allowed_drift

        if age < HIGH_CONFIDENCE_AGE:
            confidence = ConfidenceLevel.HIGH
        elif age < MEDIUM_CONFIDENCE_AGE:
            confidence = ConfidenceLevel.MEDIUM
        else:
            confidence = ConfidenceLevel.LOW

        return DetectionResult(
            is_tampered=is_tampered,
            device_time=device_time,
            trusted_time=expected_time,
            boot_time=boot_time,
            detection_method=DetectionMethod.STORED_REFERENCE,
            confidence_level=confidence,
            message=self._message(is_tampered, drift),
        )

    def _validate_uptime(
        self, reference: TrustedReference, current: Optional[DeviceStartupReference]
    ) -> Optional[UptimeValidation]:
        """Cross-check uptime against the reference; None when no current data."""
        if current is None:
            log.debug("Startup reference unavailable, skipping uptime check")
            return None

        stored = DeviceStartupReference(
            estimated_boot_time=reference.boot_time,
            process_start_time=reference.created_at,
            system_uptime=reference.device_uptime,
            process_uptime=0.0,  # not persisted
            device_model=current.device_model,
            system_version=current.system_version,
            timestamp=reference.created_at,
        )
        validation = validate_uptime_consistency(
            stored,
            current,
            current.timestamp,
            reboot_tolerance=self.config.reboot_tolerance,
            uptime_tolerance=self.config.uptime_tolerance,
        )
        log.debug(f"Uptime check: {validation.reason}")
        return validation

    # Tier 3: nothing to compare against

    def _boot_time_only(
        self, device_time: datetime, boot_time: Optional[datetime]
    ) -> DetectionResult:
        return self._low_confidence(
            device_time, boot_time, DetectionMethod.BOOT_TIME_ANALYSIS,
            "No network or stored reference available",
        )

    @staticmethod
    def _low_confidence(
        device_time: datetime,
        boot_time: Optional[datetime],
        method: DetectionMethod,
        message: str,
    ) -> DetectionResult:
        return DetectionResult(
            is_tampered=False,
            device_time=device_time,
            trusted_time=None,
            boot_time=boot_time,
            detection_method=method,
            confidence_level=ConfidenceLevel.LOW,
            message=message,
        )

    @staticmethod
    def _message(is_tampered: bool, drift: float) -> str:
        if is_tampered:
            minutes = int(drift / 60)
            return f"Time tampering detected! Device time differs by {minutes} minutes."
        return "Time integrity verified. System time appears accurate."

    @staticmethod
    def _log_result(result: DetectionResult) -> None:
        if result.is_tampered:
            log.warning(
                f"Clock tamper detected via {result.detection_method.tag} "
                f"({result.confidence_level.tag} confidence): {result.message}"
            )
        else:
            log.info(
                f"No tampering via {result.detection_method.tag} "
                f"({result.confidence_level.tag} confidence)"
            )
