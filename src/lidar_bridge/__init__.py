"""
LidarBridge
===========

Real-time bridge from a ZeroMQ LIDAR scan publisher to WebSocket clients.

The bridge subscribes to MessagePack-encoded scan frames, validates each
frame, and pushes accepted scans to every connected client without
re-encoding the points. A /health probe reports the upstream connection
flag and the number of connected clients.

Components:
    - stream: Scan decoding and the ZeroMQ subscriber
    - fanout: Per-consumer channels and the broadcast hub
    - health: Liveness reporting
    - bridge: Startup/shutdown ordering
    - main: FastAPI application and entry point

Example:
    # Run the bridge
    python -m lidar_bridge

    # Or embed it
    from lidar_bridge.main import create_app
    app = create_app()
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
]
