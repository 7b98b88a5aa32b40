"""
Health Reporter
===============

Builds the /health payload from a snapshot of the shared bridge state.
"""

from lidar_bridge.models.events import iso_timestamp
from lidar_bridge.models.health import HealthStatus
from lidar_bridge.state import BridgeState


class HealthReporter:
    """Read-only view of upstream and consumer state."""

    def __init__(self, state: BridgeState) -> None:
        self._state = state

    def get_health(self) -> HealthStatus:
        """Current health. Never blocks on subscriber or hub internals."""
        snapshot = self._state.snapshot()
        return HealthStatus(
            status="ok",
            zmq_connected=snapshot.upstream_connected,
            clients_connected=snapshot.consumer_count,
            timestamp=iso_timestamp(),
        )
