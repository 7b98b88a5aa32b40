"""
Stream Module
=============

Upstream ingestion components.

This module provides the ingestion layer of the bridge:
    - ScanBatch: One accepted scan (raw frame + point count)
    - decode: MessagePack frame -> list of points
    - UpstreamSubscriber: ZeroMQ SUB client with validation and reconnection

Example:
    from lidar_bridge.state import BridgeState
    from lidar_bridge.stream import UpstreamSubscriber

    subscriber = UpstreamSubscriber(
        endpoint="tcp://127.0.0.1:5551",
        bridge_state=BridgeState(),
        on_scan=hub.publish_scan,
    )
    task = asyncio.create_task(subscriber.run())
"""

from lidar_bridge.stream.frame import ScanBatch
from lidar_bridge.stream.decoder import DecodeError, ScanShapeError, decode
from lidar_bridge.stream.subscriber import (
    SubscriberMetrics,
    UpstreamConnectError,
    UpstreamState,
    UpstreamSubscriber,
)


__all__ = [
    "ScanBatch",
    "DecodeError",
    "ScanShapeError",
    "decode",
    "SubscriberMetrics",
    "UpstreamConnectError",
    "UpstreamState",
    "UpstreamSubscriber",
]
