"""
Scan Batch Data Model
=====================

Internal representation of one accepted upstream frame.

A ScanBatch is the unit handed from the subscriber to the fan-out hub.
It is built fresh for every accepted frame and discarded once the
broadcast call returns.

Design Rules:
    - payload is the raw upstream frame, never re-encoded
    - Only frames that decoded into a non-empty point array become batches
"""

import time
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ScanBatch:
    """
    One accepted LIDAR scan.

    Attributes:
        received_at: UNIX wall-clock time the frame was received
        point_count: Number of points decoded from the frame (>= 1)
        payload: Raw MessagePack frame as received from upstream
    """

    received_at: float
    point_count: int
    payload: bytes

    @classmethod
    def from_frame(cls, payload: bytes, point_count: int) -> "ScanBatch":
        return cls(received_at=time.time(), point_count=point_count, payload=payload)

    @property
    def timestamp_ms(self) -> int:
        """Receive time as epoch milliseconds."""
        return int(self.received_at * 1000)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the payload."""
        return (
            f"ScanBatch(received_at={self.received_at:.3f}, "
            f"point_count={self.point_count}, "
            f"payload_bytes={len(self.payload)})"
        )
