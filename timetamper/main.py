"""Main entry point for the time tamper detector."""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from .config import Config
from .detector import TamperDetector
from .history import ScanHistory
from .models import ConfidenceLevel, DetectionResult
from .mqtt_client import MqttClient
from .providers import HostSystemClock, NtpTimeProvider
from .storage import JsonFileBackend, TrustedReferenceStore

log = logging.getLogger(__name__)

# Default config paths
SYSTEM_CONFIG = Path("/etc/timetamper/config.yaml")
USER_CONFIG = Path.home() / ".config/timetamper/config.yaml"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TAMPERED = 2


class TimeTamperAgent:
    """Runs detections, records history and reports results."""

    def __init__(self, config: Config):
        self.config = config
        self._stop = threading.Event()

        backend = JsonFileBackend(config.storage.state_file)
        self.system = HostSystemClock()
        self.store = TrustedReferenceStore(
            backend,
            validity=config.storage.reference_validity,
            capacity=config.storage.reference_cap,
        )
        self.detector = TamperDetector(
            network=NtpTimeProvider(config.network),
            system=self.system,
            store=self.store,
            config=config.detection,
        )
        self.history = ScanHistory(backend, cap=config.history.cap)
        self.mqtt_client: Optional[MqttClient] = (
            MqttClient(config.mqtt) if config.mqtt.enabled else None
        )

        # Track tamper state for transition events
        self._tamper_detected = False

    def scan(self) -> DetectionResult:
        """Run one detection and record it."""
        result = self.detector.detect_tampering(self._stop)
        self.history.add(result)
        return result

    def _report(self, result: DetectionResult) -> None:
        """Publish a result and any tamper state transition."""
        if not self.mqtt_client:
            return

        self.mqtt_client.publish_result(result)
        tampered = result.is_tampered and result.confidence_level != ConfidenceLevel.LOW

        if tampered and not self._tamper_detected:
            self.mqtt_client.publish_event("clock_tamper", {"message": result.message})
            self.mqtt_client.publish_tamper_state(True, result.message)
            self._tamper_detected = True
        elif not tampered and self._tamper_detected:
            self.mqtt_client.publish_tamper_state(False)
            self._tamper_detected = False

    def run(self) -> None:
        """Scan periodically until stopped."""
        log.info("Starting time tamper detector")
        log.info(f"Time servers: {self.config.network.servers}")

        if self.mqtt_client:
            try:
                self.mqtt_client.connect()
            except OSError as e:
                log.error(f"Failed to connect to MQTT broker: {e}")
            else:
                if self.mqtt_client.wait_for_connection(timeout=30):
                    self.mqtt_client.publish_ha_discovery()
                    self.mqtt_client.publish_tamper_state(False)
                else:
                    log.error("Failed to connect to MQTT broker, results will not be published")

        interval = self.config.watch.interval
        try:
            while not self._stop.is_set():
                try:
                    result = self.scan()
                except Exception as e:
                    log.error(f"Scan failed: {e}")
                else:
                    self._report(result)
                self._stop.wait(interval)
        except KeyboardInterrupt:
            log.info("Interrupted by user")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the agent and abandon any in-flight network fetch."""
        if not self._stop.is_set():
            log.info("Stopping time tamper detector")
        self._stop.set()
        if self.mqtt_client:
            self.mqtt_client.disconnect()


def format_result(result: DetectionResult) -> str:
    """Render a result for the terminal."""
    lines = [
        "Time Tampering Detected" if result.is_tampered else "Time Integrity Verified",
        f"  Method:       {result.detection_method.display_name}",
        f"  Confidence:   {result.confidence_level.display_name}",
        f"  Device time:  {result.device_time.isoformat()}",
    ]
    if result.trusted_time:
        lines.append(f"  Trusted time: {result.trusted_time.isoformat()}")
    if result.boot_time:
        lines.append(f"  Boot time:    {result.boot_time.isoformat()}")
    lines.append(f"  {result.message}")
    return "\n".join(lines)


def format_system_info(system: HostSystemClock) -> str:
    info = system.system_info()
    boot = info.boot_time.isoformat() if info.boot_time else "unavailable"
    return "\n".join([
        f"Current time:   {info.current_time.isoformat()}",
        f"Boot time:      {boot}",
        f"Uptime:         {info.uptime:.0f}s",
        f"Process uptime: {info.process_uptime:.0f}s",
        f"Timezone:       {info.timezone}",
        f"Locale:         {info.locale}",
        f"Device model:   {info.device_model}",
        f"System version: {info.system_version}",
    ])


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_config(path: Optional[Path]) -> Config:
    """Load config from an explicit path, the default locations, or defaults."""
    if path:
        return Config.load(path)
    if SYSTEM_CONFIG.exists():
        return Config.load(SYSTEM_CONFIG)
    if USER_CONFIG.exists():
        return Config.load(USER_CONFIG)
    log.debug("No config file found, using defaults")
    return Config()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect manipulation of the system clock"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help=f"Path to config file (default: {SYSTEM_CONFIG} or {USER_CONFIG})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Scan periodically and publish results",
    )
    parser.add_argument(
        "--info",
        action="store_true",
        help="Print system clock information and exit",
    )
    parser.add_argument(
        "--export",
        nargs="?",
        const="-",
        metavar="PATH",
        help="Export scan history as JSON (to stdout or PATH)",
    )
    parser.add_argument(
        "--clear-history",
        action="store_true",
        help="Clear scan history",
    )
    parser.add_argument(
        "--clear-references",
        action="store_true",
        help="Clear stored trusted time references",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        log.error(str(e))
        return EXIT_ERROR

    agent = TimeTamperAgent(config)

    if args.info:
        print(format_system_info(agent.system))
        return EXIT_OK

    if args.clear_history or args.clear_references:
        if args.clear_history:
            agent.history.clear()
        if args.clear_references:
            agent.store.clear()
        return EXIT_OK

    if args.export:
        exported = agent.history.export()
        if args.export == "-":
            print(exported)
        else:
            Path(args.export).write_text(exported + "\n")
            log.info(f"Exported {len(agent.history)} results to {args.export}")
        return EXIT_OK

    if args.watch:
        def signal_handler(sig, frame):
            log.info(f"Received signal {sig}")
            agent.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        agent.run()
        return EXIT_OK

    try:
        result = agent.scan()
    except Exception as e:
        log.error(f"Scan failed: {e}")
        return EXIT_ERROR

    print(format_result(result))
    if result.is_tampered and result.confidence_level != ConfidenceLevel.LOW:
        return EXIT_TAMPERED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
