"""
Fan-out Hub
===========

Tracks the live downstream consumers and broadcasts accepted scans to
every one of them.

Design Rules:
    - Membership changes update the shared consumer count immediately
    - Every consumer gets its status event before any scan
    - Nothing is encoded or queued when no consumer is attached
    - A failing consumer never stops delivery to the others
    - Frames are not retained after the broadcast call returns
"""

import logging
import random
from typing import Dict, List, Optional

from lidar_bridge.fanout.channel import ChannelClosedError, ConsumerChannel
from lidar_bridge.models.events import ScanEvent, StatusEvent
from lidar_bridge.state import BridgeState
from lidar_bridge.stream.frame import ScanBatch


logger = logging.getLogger(__name__)


class FanoutMetrics:
    """Metrics for FanoutHub observability."""

    __slots__ = (
        "broadcasts",
        "deliveries",
        "delivery_failures",
        "consumers_total",
        "skipped_no_consumers",
    )

    def __init__(self) -> None:
        self.broadcasts: int = 0
        self.deliveries: int = 0
        self.delivery_failures: int = 0
        self.consumers_total: int = 0
        self.skipped_no_consumers: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "broadcasts": self.broadcasts,
            "deliveries": self.deliveries,
            "delivery_failures": self.delivery_failures,
            "consumers_total": self.consumers_total,
            "skipped_no_consumers": self.skipped_no_consumers,
        }


class FanoutHub:
    """
    Registry of consumer channels with broadcast.

    Attributes:
        consumer_count: Number of currently attached consumers
        metrics: Operational metrics

    Example:
        hub = FanoutHub(state=BridgeState())

        channel = hub.join()
        await hub.publish_scan(frame, point_count=5)
        hub.leave(channel.consumer_id)
    """

    def __init__(
        self,
        state: BridgeState,
        queue_size: int = 16,
        status_message: str = "Connected to LIDAR bridge",
        stats_log_probability: float = 0.01,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize fan-out hub.

        Args:
            state: Shared bridge state; the hub owns consumer_count
            queue_size: Per-consumer outbound queue size
            status_message: Greeting carried by the status event
            stats_log_probability: Chance of logging a broadcast summary
            rng: Random source for the summary sampling
        """
        self._state = state
        self.queue_size = queue_size
        self.status_message = status_message
        self.stats_log_probability = stats_log_probability
        self._rng = rng or random.Random()

        self._channels: Dict[str, ConsumerChannel] = {}
        self._consumer_counter: int = 0
        self._closed: bool = False
        self._departed_dropped: int = 0

        self.metrics = FanoutMetrics()

    @property
    def consumer_count(self) -> int:
        return len(self._channels)

    @property
    def consumer_ids(self) -> List[str]:
        return list(self._channels)

    def join(self) -> ConsumerChannel:
        """
        Register a new consumer.

        The returned channel holds the status event as its greeting, so it
        is the first thing the consumer receives even if scans overflow
        the queue before the first read.

        Returns:
            The consumer's channel; its consumer_id is used to leave.
        """
        self._consumer_counter += 1
        consumer_id = f"consumer_{self._consumer_counter}"

        # Status sits outside the drop-oldest queue so scans cannot evict it
        channel = ConsumerChannel(
            consumer_id,
            maxsize=self.queue_size,
            greeting=StatusEvent(message=self.status_message).encode(),
        )
        if self._closed:
            # Shutting down: deliver the greeting, then end the stream
            channel.close()
            return channel

        self._channels[consumer_id] = channel
        self._state.set_consumer_count(len(self._channels))
        self.metrics.consumers_total += 1

        logger.info(f"Client connected. Total clients: {len(self._channels)}")
        return channel

    def leave(self, consumer_id: str) -> bool:
        """
        Deregister a consumer. Idempotent.

        Returns:
            True if the consumer was registered.
        """
        channel = self._channels.pop(consumer_id, None)
        if channel is None:
            return False

        channel.close()
        self._departed_dropped += channel.dropped_count
        self._state.set_consumer_count(len(self._channels))
        logger.info(f"Client disconnected. Total clients: {len(self._channels)}")
        return True

    async def publish_scan(self, frame: bytes, point_count: int) -> int:
        """
        Broadcast one accepted frame.

        Returns immediately, without building a batch, when nobody is
        attached.

        Args:
            frame: Raw upstream frame
            point_count: Number of decoded points

        Returns:
            Number of consumers the scan was queued for.
        """
        if not self._channels:
            self.metrics.skipped_no_consumers += 1
            return 0

        return await self.broadcast(ScanBatch.from_frame(frame, point_count))

    async def broadcast(self, batch: ScanBatch) -> int:
        """
        Queue a batch on every registered consumer.

        The event is encoded once and the same bytes are shared by all
        channels.

        Returns:
            Number of consumers the scan was queued for.
        """
        if not self._channels:
            self.metrics.skipped_no_consumers += 1
            return 0

        message = ScanEvent.from_batch(batch).encode()
        self.metrics.broadcasts += 1

        delivered = 0
        for consumer_id, channel in list(self._channels.items()):
            try:
                channel.put(message)
                delivered += 1
            except ChannelClosedError as e:
                self.metrics.delivery_failures += 1
                logger.warning(f"Delivery to {consumer_id} failed: {e}")
                self.leave(consumer_id)
            except Exception as e:
                self.metrics.delivery_failures += 1
                logger.error(f"Unexpected error delivering to {consumer_id}: {e}")

        self.metrics.deliveries += delivered

        if self._rng.random() < self.stats_log_probability:
            logger.info(
                f"Broadcasted scan: {batch.point_count} points "
                f"to {len(self._channels)} clients"
            )

        return delivered

    def close(self) -> int:
        """
        Close every consumer channel and refuse new members.

        Queued messages are still drained by each consumer's sender.

        Returns:
            Number of channels closed.
        """
        self._closed = True
        consumer_ids = list(self._channels)
        for consumer_id in consumer_ids:
            self.leave(consumer_id)
        if consumer_ids:
            logger.info(f"Closed {len(consumer_ids)} consumer channels")
        return len(consumer_ids)

    def get_stats(self) -> dict:
        """Get hub statistics."""
        return {
            "clients_connected": len(self._channels),
            "dropped_messages": self._departed_dropped + sum(
                c.dropped_count for c in self._channels.values()
            ),
            **self.metrics.to_dict(),
        }
