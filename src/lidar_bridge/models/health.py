"""
Health Schema
=============

Response model for the GET /health liveness probe.
"""

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Liveness payload describing upstream and downstream state."""

    status: str = Field(default="ok")
    zmq_connected: bool = Field(..., description="Upstream subscriber is connected")
    clients_connected: int = Field(..., ge=0, description="Live WebSocket consumers")
    timestamp: str = Field(..., description="ISO8601 time of the snapshot")
