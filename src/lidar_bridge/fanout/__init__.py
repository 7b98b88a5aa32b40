"""
Fan-out Module
==============

Downstream delivery components.

    - ConsumerChannel: Bounded per-consumer outbound queue (drops oldest)
    - FanoutHub: Consumer registry and broadcast
"""

from lidar_bridge.fanout.channel import ChannelClosedError, ConsumerChannel
from lidar_bridge.fanout.hub import FanoutHub, FanoutMetrics


__all__ = [
    "ChannelClosedError",
    "ConsumerChannel",
    "FanoutHub",
    "FanoutMetrics",
]
