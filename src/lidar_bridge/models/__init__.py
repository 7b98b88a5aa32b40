"""
Data Models
===========

Pydantic models for the LIDAR bridge wire formats.

Models:
    Events:
        - StatusEvent: Acknowledgement sent once per consumer
        - ScanEvent: One lidar_scan push
    Health:
        - HealthStatus: GET /health payload
"""

from lidar_bridge.models.events import (
    SCAN_EVENT,
    STATUS_EVENT,
    ScanEvent,
    StatusEvent,
    iso_timestamp,
)
from lidar_bridge.models.health import HealthStatus

__all__ = [
    "SCAN_EVENT",
    "STATUS_EVENT",
    "ScanEvent",
    "StatusEvent",
    "iso_timestamp",
    "HealthStatus",
]
