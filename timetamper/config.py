"""Configuration handling for the time tamper detector."""

import socket
from dataclasses import dataclass, field
from pathlib import Path

import yaml


DEFAULT_TIME_SERVERS = [
    "time.apple.com",
    "time.google.com",
    "pool.ntp.org",
    "time.cloudflare.com",
]


@dataclass
class DetectionConfig:
    max_allowed_drift: float = 300.0  # seconds
    reboot_tolerance: float = 60.0  # boot time shift that means a reboot
    uptime_tolerance: float = 300.0  # allowed uptime progression mismatch


@dataclass
class NetworkConfig:
    servers: list[str] = field(default_factory=lambda: list(DEFAULT_TIME_SERVERS))
    timeout: float = 10.0  # per server, seconds
    reliable_round_trip: float = 5.0
    ntp_version: int = 3
    probe_host: str = "1.1.1.1"
    probe_port: int = 53


@dataclass
class StorageConfig:
    state_file: Path = Path("/var/lib/timetamper/state.json")
    reference_validity: float = 86400.0  # 24 hours
    reference_cap: int = 10


@dataclass
class HistoryConfig:
    cap: int = 50


@dataclass
class MqttConfig:
    enabled: bool = False
    broker: str = "homeassistant.local"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic_prefix: str = field(
        default_factory=lambda: f"timetamper/{socket.gethostname()}"
    )


@dataclass
class WatchConfig:
    interval: int = 60  # seconds between scans


@dataclass
class Config:
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        # Detection thresholds
        if "detection" in data:
            detection_data = data["detection"] or {}
            config.detection = DetectionConfig(
                max_allowed_drift=float(detection_data.get(
                    "max_allowed_drift", config.detection.max_allowed_drift
                )),
                reboot_tolerance=float(detection_data.get(
                    "reboot_tolerance", config.detection.reboot_tolerance
                )),
                uptime_tolerance=float(detection_data.get(
                    "uptime_tolerance", config.detection.uptime_tolerance
                )),
            )

        # Network time sources
        if "network" in data:
            network_data = data["network"] or {}
            config.network = NetworkConfig(
                servers=list(network_data.get("servers", config.network.servers)),
                timeout=float(network_data.get("timeout", config.network.timeout)),
                reliable_round_trip=float(network_data.get(
                    "reliable_round_trip", config.network.reliable_round_trip
                )),
                ntp_version=network_data.get("ntp_version", config.network.ntp_version),
                probe_host=network_data.get("probe_host", config.network.probe_host),
                probe_port=network_data.get("probe_port", config.network.probe_port),
            )

        # Persistence
        if "storage" in data:
            storage_data = data["storage"] or {}
            config.storage = StorageConfig(
                state_file=Path(storage_data.get(
                    "state_file", config.storage.state_file
                )),
                reference_validity=float(storage_data.get(
                    "reference_validity", config.storage.reference_validity
                )),
                reference_cap=storage_data.get(
                    "reference_cap", config.storage.reference_cap
                ),
            )

        if "history" in data:
            history_data = data["history"] or {}
            config.history = HistoryConfig(
                cap=history_data.get("cap", config.history.cap),
            )

        # MQTT reporting
        if "mqtt" in data:
            mqtt_data = data["mqtt"] or {}
            config.mqtt = MqttConfig(
                enabled=mqtt_data.get("enabled", True),
                broker=mqtt_data.get("broker", config.mqtt.broker),
                port=mqtt_data.get("port", config.mqtt.port),
                username=mqtt_data.get("username"),
                password=mqtt_data.get("password"),
                topic_prefix=mqtt_data.get("topic_prefix", config.mqtt.topic_prefix),
            )

        if "watch" in data:
            watch_data = data["watch"] or {}
            config.watch = WatchConfig(
                interval=watch_data.get("interval", config.watch.interval),
            )

        return config
