"""
Downstream Event Schema
=======================

Pydantic models for the events pushed to WebSocket consumers.

Output Contract (one WebSocket message per event):
    status (text frame, JSON, once on connect):
        {"event": "status",
         "data": {"message": "Connected to LIDAR bridge",
                  "timestamp": "2024-02-07T15:53:54.567Z"}}

    lidar_scan (binary frame, MessagePack, per accepted scan):
        {"event": "lidar_scan",
         "data": {"timestamp": 1707321234567,
                  "pointCount": 5,
                  "points": <bin: raw upstream frame>}}

The points field carries the upstream frame untouched, so clients decode
the same MessagePack point array the publisher produced.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import msgpack
from pydantic import BaseModel, ConfigDict, Field

from lidar_bridge.stream.frame import ScanBatch


STATUS_EVENT = "status"
SCAN_EVENT = "lidar_scan"


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC ISO8601 timestamp with millisecond precision and a Z suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StatusEvent(BaseModel):
    """Acknowledgement sent to a consumer before any scan data."""

    message: str = Field(..., description="Human readable greeting")
    timestamp: str = Field(default_factory=iso_timestamp, description="ISO8601 time")

    def encode(self) -> str:
        """Encode as a JSON text message."""
        return json.dumps({"event": STATUS_EVENT, "data": self.model_dump()})


class ScanEvent(BaseModel):
    """One scan as delivered to consumers."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: int = Field(..., ge=0, description="Receive time, epoch milliseconds")
    point_count: int = Field(..., ge=0, alias="pointCount")
    points: bytes = Field(..., description="Raw MessagePack frame")

    @classmethod
    def from_batch(cls, batch: ScanBatch) -> "ScanEvent":
        return cls(
            timestamp=batch.timestamp_ms,
            point_count=batch.point_count,
            points=batch.payload,
        )

    def encode(self) -> bytes:
        """Encode as a binary MessagePack message."""
        return msgpack.packb(
            {"event": SCAN_EVENT, "data": self.model_dump(by_alias=True)},
            use_bin_type=True,
        )
