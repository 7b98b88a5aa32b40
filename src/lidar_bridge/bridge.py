"""
LIDAR Bridge Lifecycle
======================

Owns the bridge components and their startup/shutdown ordering.

Startup:
    1. Fan-out hub ready (consumers may attach before any data flows)
    2. Upstream subscriber task launched

Shutdown:
    1. Stop accepting upstream frames
    2. Close the upstream socket (bounded wait, then cancel)
    3. Close every consumer channel
"""

import asyncio
import logging
import time
from typing import Optional

from lidar_bridge.config import Settings
from lidar_bridge.fanout import FanoutHub
from lidar_bridge.health import HealthReporter
from lidar_bridge.state import BridgeState
from lidar_bridge.stream import UpstreamSubscriber


logger = logging.getLogger(__name__)


class LidarBridge:
    """
    ZeroMQ -> WebSocket bridge for LIDAR scans.

    Attributes:
        state: Shared connection flag and consumer count
        hub: Downstream fan-out
        subscriber: Upstream ZeroMQ subscriber
        health: Health reporter over state
    """

    def __init__(
        self,
        hub: FanoutHub,
        subscriber: UpstreamSubscriber,
        state: BridgeState,
        close_timeout: float = 5.0,
    ) -> None:
        self.hub = hub
        self.subscriber = subscriber
        self.state = state
        self.health = HealthReporter(state)
        self.close_timeout = close_timeout

        self._subscriber_task: Optional[asyncio.Task] = None
        self._running: bool = False
        self._started_at: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LidarBridge":
        """Build a bridge from loaded settings."""
        state = BridgeState()
        hub = FanoutHub(
            state=state,
            queue_size=settings.fanout.queue_size,
            status_message=settings.fanout.status_message,
            stats_log_probability=settings.fanout.stats_log_probability,
        )
        upstream = settings.upstream
        subscriber = UpstreamSubscriber(
            endpoint=upstream.endpoint,
            bridge_state=state,
            on_scan=hub.publish_scan,
            poll_timeout_ms=upstream.poll_timeout_ms,
            receive_hwm=upstream.receive_hwm,
            monitor=upstream.monitor,
            reconnect_enabled=upstream.reconnect_enabled,
            reconnect_backoff_ms=upstream.reconnect_backoff_ms,
            reconnect_backoff_max_ms=upstream.reconnect_backoff_max_ms,
            max_reconnect_attempts=upstream.max_reconnect_attempts,
        )
        return cls(
            hub=hub,
            subscriber=subscriber,
            state=state,
            close_timeout=upstream.close_timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def uptime_seconds(self) -> float:
        if not self._started_at:
            return 0.0
        return time.time() - self._started_at

    async def start(self) -> None:
        """Start the upstream subscription. The hub is ready on construction."""
        if self._running:
            return
        self._running = True
        self._started_at = time.time()

        logger.info("Starting LIDAR bridge...")
        self._subscriber_task = asyncio.create_task(
            self.subscriber.run(),
            name="upstream_subscriber",
        )
        logger.info("Waiting for LIDAR data from upstream publisher...")

    async def stop(self) -> None:
        """
        Stop the bridge. Idempotent.

        Errors are logged and shutdown carries on; this never raises.
        """
        if not self._running:
            return
        self._running = False
        logger.info("Shutting down LIDAR bridge...")

        try:
            await self.subscriber.stop()
        except Exception as e:
            logger.error(f"Error stopping upstream subscriber: {e}")

        if self._subscriber_task:
            try:
                await asyncio.wait_for(self._subscriber_task, timeout=self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning("Upstream subscriber did not stop in time, cancelling")
                self._subscriber_task.cancel()
                try:
                    await self._subscriber_task
                except asyncio.CancelledError:
                    pass
            except Exception as e:
                logger.error(f"Upstream subscriber failed during shutdown: {e}")
            self._subscriber_task = None

        try:
            self.hub.close()
        except Exception as e:
            logger.error(f"Error closing consumer channels: {e}")

        logger.info("LIDAR bridge stopped")

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "uptime_seconds": round(self.uptime_seconds, 1),
            "upstream_endpoint": self.subscriber.endpoint,
            "upstream_state": self.subscriber.state.value,
            "upstream": self.subscriber.metrics.to_dict(),
            "fanout": self.hub.get_stats(),
        }
