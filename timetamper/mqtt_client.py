"""MQTT publisher for detection results."""

import json
import logging
import socket
import threading
from typing import Optional

import paho.mqtt.client as mqtt

from .config import MqttConfig
from .models import DetectionResult

log = logging.getLogger(__name__)

# Home Assistant MQTT Discovery prefix
HA_DISCOVERY_PREFIX = "homeassistant"


class MqttClient:
    """MQTT client with LWT that publishes results and tamper state."""

    def __init__(self, config: MqttConfig):
        self.config = config
        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._node_id = socket.gethostname()

    @property
    def topic_status(self) -> str:
        return f"{self.config.topic_prefix}/status"

    @property
    def topic_result(self) -> str:
        return f"{self.config.topic_prefix}/result"

    @property
    def topic_tamper(self) -> str:
        return f"{self.config.topic_prefix}/tamper"

    @property
    def topic_event(self) -> str:
        return f"{self.config.topic_prefix}/event"

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def connect(self) -> None:
        """Connect to MQTT broker."""
        # paho-mqtt 2.x uses CallbackAPIVersion
        try:
            self._client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION1,
                client_id=f"timetamper-{self._node_id}",
                protocol=mqtt.MQTTv311,
            )
        except (AttributeError, TypeError):
            # paho-mqtt 1.x fallback
            self._client = mqtt.Client(
                client_id=f"timetamper-{self._node_id}",
                protocol=mqtt.MQTTv311,
            )

        if self.config.username:
            self._client.username_pw_set(
                self.config.username,
                self.config.password,
            )

        # Last Will Testament for offline detection
        lwt_payload = json.dumps({"state": "offline"})
        self._client.will_set(
            self.topic_status,
            payload=lwt_payload,
            qos=1,
            retain=True,
        )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

        log.info(f"Connecting to {self.config.broker}:{self.config.port}")
        self._client.connect(
            self.config.broker,
            self.config.port,
            keepalive=60,
        )
        self._client.loop_start()

    def disconnect(self) -> None:
        """Disconnect from MQTT broker."""
        if self._client:
            self.publish_status("offline")
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
            self._connected.clear()
            log.info("Disconnected from MQTT broker")

    def wait_for_connection(self, timeout: float = 10.0) -> bool:
        """Wait for connection to be established."""
        return self._connected.wait(timeout)

    def publish_status(self, state: str) -> None:
        if self._client:
            payload = json.dumps({"state": state})
            self._client.publish(self.topic_status, payload, qos=1, retain=True)
            log.debug(f"Published status: {state}")

    def publish_result(self, result: DetectionResult) -> None:
        """Publish the latest detection result (export format)."""
        if self._client:
            payload = json.dumps(result.to_export())
            self._client.publish(self.topic_result, payload, qos=0, retain=True)
            log.debug(f"Published result: tampered={result.is_tampered}")

    def publish_tamper_state(self, tampered: bool, message: str = "") -> None:
        if self._client:
            payload = json.dumps({
                "state": "ON" if tampered else "OFF",
                "message": message,
            })
            self._client.publish(self.topic_tamper, payload, qos=1, retain=True)
            log.debug(f"Published tamper state: {tampered}")

    def publish_event(self, event: str, data: Optional[dict] = None) -> None:
        if self._client:
            payload = json.dumps({"event": event, **(data or {})})
            self._client.publish(self.topic_event, payload, qos=1, retain=False)
            log.debug(f"Published event: {event}")

    def publish_ha_discovery(self) -> None:
        """Publish Home Assistant MQTT discovery messages."""
        if not self._client:
            return

        node = self._node_id
        device_info = {
            "identifiers": [f"timetamper_{node}"],
            "name": f"Time Tamper Detector {node}",
            "manufacturer": "timetamper",
            "model": "Clock Tamper Detector",
        }

        self._publish_discovery("binary_sensor", f"{node}_online", {
            "name": f"{node} Online",
            "unique_id": f"timetamper_{node}_online",
            "device": device_info,
            "state_topic": self.topic_status,
            "value_template": "{{ value_json.state }}",
            "payload_on": "online",
            "payload_off": "offline",
            "device_class": "connectivity",
        })

        self._publish_discovery("binary_sensor", f"{node}_tampered", {
            "name": f"{node} Clock Tampered",
            "unique_id": f"timetamper_{node}_tampered",
            "device": device_info,
            "state_topic": self.topic_tamper,
            "value_template": "{{ value_json.state }}",
            "device_class": "problem",
            "icon": "mdi:clock-alert-outline",
        })

        self._publish_discovery("sensor", f"{node}_confidence", {
            "name": f"{node} Detection Confidence",
            "unique_id": f"timetamper_{node}_confidence",
            "device": device_info,
            "state_topic": self.topic_result,
            "value_template": "{{ value_json.confidenceLevel }}",
            "icon": "mdi:shield-check-outline",
        })

        self._publish_discovery("sensor", f"{node}_method", {
            "name": f"{node} Detection Method",
            "unique_id": f"timetamper_{node}_method",
            "device": device_info,
            "state_topic": self.topic_result,
            "value_template": "{{ value_json.detectionMethod }}",
            "icon": "mdi:clock-check-outline",
        })

        log.info("Published HA discovery")

    def _publish_discovery(self, component: str, object_id: str, config: dict) -> None:
        topic = f"{HA_DISCOVERY_PREFIX}/{component}/timetamper/{object_id}/config"
        self._client.publish(topic, json.dumps(config), qos=1, retain=True)

    def _on_connect(self, client: mqtt.Client, userdata, flags, rc: int) -> None:
        if rc == 0:
            log.info("Connected to MQTT broker")
            self._connected.set()
            self.publish_status("online")
        else:
            log.error(f"Connection failed with code {rc}")

    def _on_disconnect(self, client: mqtt.Client, userdata, rc: int) -> None:
        self._connected.clear()
        if rc != 0:
            log.warning(f"Unexpected disconnect (rc={rc}), will reconnect")
        else:
            log.info("Disconnected cleanly")
