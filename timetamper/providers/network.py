"""NTP implementation of the network time provider."""

import logging
import socket
import threading
import time
from datetime import datetime, timezone
from typing import Optional

import ntplib

from ..config import NetworkConfig
from ..models import NetworkTimeSample
from .base import NetworkTimeProvider

log = logging.getLogger(__name__)


class NtpTimeProvider(NetworkTimeProvider):
    """Queries a list of NTP servers in order; first answer wins."""

    def __init__(self, config: NetworkConfig):
        self.config = config
        self._client = ntplib.NTPClient()

    def is_available(self) -> bool:
        """Probe connectivity with a short TCP connect."""
        try:
            with socket.create_connection(
                (self.config.probe_host, self.config.probe_port),
                timeout=min(self.config.timeout, 3.0),
            ):
                return True
        except OSError as e:
            log.debug(f"Connectivity probe failed: {e}")
            return False

    def fetch(
        self, cancel: Optional[threading.Event] = None
    ) -> Optional[NetworkTimeSample]:
        """Fetch time from the first configured server that answers."""
        if not self.is_available():
            log.info("Network unavailable, skipping network time fetch")
            return None

        deadline = time.monotonic() + self.config.timeout * len(self.config.servers)

        for server in self.config.servers:
            if cancel is not None and cancel.is_set():
                log.info("Network time fetch cancelled")
                return None

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log.warning("Network time fetch deadline exceeded")
                return None

            sample = self._fetch_from_server(server, min(self.config.timeout, remaining))
            if sample is not None:
                return sample

        log.warning(f"No time server answered ({', '.join(self.config.servers)})")
        return None

    def _fetch_from_server(self, server: str, timeout: float) -> Optional[NetworkTimeSample]:
        """Query a single server."""
        start = time.monotonic()
        try:
            response = self._client.request(
                server,
                version=self.config.ntp_version,
                timeout=timeout,
            )
        except (ntplib.NTPException, OSError) as e:
            log.debug(f"Time fetch from {server} failed: {e}")
            return None

        round_trip = time.monotonic() - start
        server_time = datetime.fromtimestamp(response.tx_time, tz=timezone.utc)
        log.debug(f"Time from {server}: {server_time.isoformat()} (rtt={round_trip:.3f}s)")

        return NetworkTimeSample(
            server_time=server_time,
            round_trip_time=round_trip,
            is_reliable=round_trip < self.config.reliable_round_trip,
            server=server,
        )
