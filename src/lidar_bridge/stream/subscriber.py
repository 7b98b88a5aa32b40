"""
Upstream Subscriber
===================

ZeroMQ SUB client for the LIDAR scan publisher.

This module provides the UpstreamSubscriber class which:
    - Connects to the publisher and subscribes to every topic
    - Receives frames strictly one at a time, in arrival order
    - Decodes and validates each frame, dropping bad ones
    - Hands accepted frames to the fan-out callback
    - Tracks the upstream connection flag in the shared BridgeState
    - Reconnects with exponential backoff after transport errors

Design Rules:
    - Does NOT re-encode payloads
    - A bad frame is logged and skipped, never fatal
    - stop() interrupts a pending read through the stop flag, the socket
      is closed afterwards by the read loop itself
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

import zmq
import zmq.asyncio
from zmq.utils.monitor import parse_monitor_message

from lidar_bridge.state import BridgeState
from lidar_bridge.stream.decoder import DecodeError, ScanShapeError, decode


logger = logging.getLogger(__name__)

ScanCallback = Callable[[bytes, int], Awaitable[object]]

_CONNECTED_EVENTS = {zmq.EVENT_CONNECTED, zmq.EVENT_HANDSHAKE_SUCCEEDED}
_DISCONNECTED_EVENTS = {zmq.EVENT_DISCONNECTED, zmq.EVENT_CONNECT_RETRIED, zmq.EVENT_CLOSED}


class UpstreamConnectError(Exception):
    """Raised when the subscriber socket cannot be created or connected."""
    pass


class UpstreamState(str, Enum):
    """Connection state of the subscriber."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    STOPPED = "STOPPED"


class SubscriberMetrics:
    """Metrics for UpstreamSubscriber observability."""

    __slots__ = (
        "frames_received",
        "batches_accepted",
        "decode_errors",
        "shape_errors",
        "empty_frames",
        "reconnect_count",
        "last_frame_at",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.batches_accepted: int = 0
        self.decode_errors: int = 0
        self.shape_errors: int = 0
        self.empty_frames: int = 0
        self.reconnect_count: int = 0
        self.last_frame_at: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "batches_accepted": self.batches_accepted,
            "decode_errors": self.decode_errors,
            "shape_errors": self.shape_errors,
            "empty_frames": self.empty_frames,
            "reconnect_count": self.reconnect_count,
            "last_frame_at": self.last_frame_at,
        }


class UpstreamSubscriber:
    """
    ZeroMQ subscriber for LIDAR scan frames.

    Attributes:
        endpoint: ZeroMQ endpoint to connect to
        state: Current connection state
        connected: Whether the publisher is currently reachable
        metrics: Operational metrics

    Example:
        subscriber = UpstreamSubscriber(
            endpoint="tcp://127.0.0.1:5551",
            bridge_state=BridgeState(),
            on_scan=hub.publish_scan,
        )

        # Start consuming (runs until stopped)
        task = asyncio.create_task(subscriber.run())

        # Later, stop gracefully
        await subscriber.stop()
        await task
    """

    def __init__(
        self,
        endpoint: str,
        bridge_state: BridgeState,
        on_scan: ScanCallback,
        poll_timeout_ms: int = 250,
        receive_hwm: int = 100,
        monitor: bool = True,
        reconnect_enabled: bool = True,
        reconnect_backoff_ms: int = 500,
        reconnect_backoff_max_ms: int = 10000,
        max_reconnect_attempts: int = 0,
        context: Optional[zmq.asyncio.Context] = None,
    ) -> None:
        """
        Initialize upstream subscriber.

        Args:
            endpoint: ZeroMQ endpoint of the publisher
            bridge_state: Shared state; the subscriber owns upstream_connected
            on_scan: Awaited with (frame, point_count) for each accepted frame
            poll_timeout_ms: Poll interval between stop-flag checks
            receive_hwm: Receive high water mark
            monitor: Follow peer connect/disconnect through a socket monitor
            reconnect_enabled: Re-open the socket after a transport error
            reconnect_backoff_ms: Initial backoff between reconnect attempts
            reconnect_backoff_max_ms: Backoff ceiling
            max_reconnect_attempts: Max attempts (0 = unlimited)
            context: ZeroMQ context (optional, the shared instance by default)
        """
        self.endpoint = endpoint
        self.bridge_state = bridge_state
        self.on_scan = on_scan
        self.poll_timeout_ms = poll_timeout_ms
        self.receive_hwm = receive_hwm
        self.monitor = monitor
        self.reconnect_enabled = reconnect_enabled
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.reconnect_backoff_max_ms = reconnect_backoff_max_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        self._context = context or zmq.asyncio.Context.instance()
        self._socket: Optional[zmq.asyncio.Socket] = None
        self._monitor_socket: Optional[zmq.asyncio.Socket] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._state: UpstreamState = UpstreamState.DISCONNECTED
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()

        self.metrics = SubscriberMetrics()

    @property
    def state(self) -> UpstreamState:
        return self._state

    @property
    def connected(self) -> bool:
        """Whether currently connected to the publisher."""
        return self._state == UpstreamState.CONNECTED

    def _set_state(self, state: UpstreamState) -> None:
        if state == self._state:
            return
        logger.debug(f"Upstream state {self._state.value} -> {state.value}")
        self._state = state
        if self.bridge_state.set_upstream_connected(state == UpstreamState.CONNECTED):
            if state == UpstreamState.CONNECTED:
                logger.info(f"Upstream connected: {self.endpoint}")
            else:
                logger.warning(f"Upstream disconnected: {self.endpoint}")

    def backoff_seconds(self, attempt: int) -> float:
        """Exponential backoff for the given reconnect attempt (1-based)."""
        backoff_ms = self.reconnect_backoff_ms * (2 ** max(attempt - 1, 0))
        return min(backoff_ms, self.reconnect_backoff_max_ms) / 1000.0

    async def run(self) -> None:
        """
        Start consuming frames.

        Runs until stop() is called. After a transport error the socket is
        re-opened with backoff, or the loop ends if reconnecting is
        disabled or max_reconnect_attempts is reached.
        """
        self._running = True
        self._stop_event.clear()

        logger.info(f"Connecting to LIDAR data source at {self.endpoint}...")

        try:
            while self._running:
                try:
                    await self._connect_and_consume()
                except (zmq.ZMQError, UpstreamConnectError) as e:
                    if not self._running:
                        break

                    logger.error(f"Error in ZMQ message loop: {e}")
                    self._set_state(UpstreamState.DISCONNECTED)

                    if not self.reconnect_enabled:
                        logger.warning("Reconnect disabled, upstream listener stopped")
                        break

                    if (
                        self.max_reconnect_attempts > 0
                        and self.metrics.reconnect_count >= self.max_reconnect_attempts
                    ):
                        logger.error(
                            f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                        )
                        break

                    self.metrics.reconnect_count += 1
                    backoff_sec = self.backoff_seconds(self.metrics.reconnect_count)
                    logger.info(
                        f"Reconnecting in {backoff_sec:.1f}s "
                        f"(attempt {self.metrics.reconnect_count})"
                    )

                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                        break
                    except asyncio.TimeoutError:
                        pass
        finally:
            # Also reached on cancellation
            self._running = False
            if self._state != UpstreamState.STOPPED:
                self._set_state(UpstreamState.DISCONNECTED)
            logger.info("Upstream subscriber stopped")

    async def stop(self) -> None:
        """
        Stop consuming gracefully.

        Signals the run loop to exit; a pending read returns within one
        poll interval and the loop closes the socket.
        """
        logger.info("Upstream subscriber stopping...")
        self._running = False
        self._stop_event.set()
        self._set_state(UpstreamState.STOPPED)

    async def _connect_and_consume(self) -> None:
        """Open the SUB socket and read frames until stopped or failed."""
        self._set_state(UpstreamState.CONNECTING)
        socket = self._open_socket()
        self._socket = socket

        try:
            if self.monitor:
                self._monitor_socket = socket.get_monitor_socket()
                self._monitor_task = asyncio.create_task(
                    self._watch_monitor(self._monitor_socket),
                    name="upstream_monitor",
                )
            socket.connect(self.endpoint)
            socket.subscribe(b"")
            logger.info("ZMQ subscriber connected successfully")
            if not self.monitor:
                self._set_state(UpstreamState.CONNECTED)

            logger.info("Starting to listen for LIDAR data...")
            while self._running:
                if not await socket.poll(self.poll_timeout_ms, zmq.POLLIN):
                    continue
                frame = await socket.recv()
                await self.handle_frame(frame)
        finally:
            await self._close_socket(socket)

    def _open_socket(self) -> zmq.asyncio.Socket:
        try:
            socket = self._context.socket(zmq.SUB)
        except zmq.ZMQError as e:
            raise UpstreamConnectError(f"Failed to create ZMQ socket: {e}") from e
        socket.setsockopt(zmq.LINGER, 0)
        socket.setsockopt(zmq.RCVHWM, self.receive_hwm)
        return socket

    async def _close_socket(self, socket: zmq.asyncio.Socket) -> None:
        if self._monitor_socket is not None:
            try:
                socket.disable_monitor()
            except zmq.ZMQError as e:
                logger.debug(f"Disabling socket monitor failed: {e}")

        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except (asyncio.CancelledError, zmq.ZMQError):
                pass
            self._monitor_task = None

        if self._monitor_socket is not None:
            self._monitor_socket.close(linger=0)
            self._monitor_socket = None

        socket.close(linger=0)
        self._socket = None

    async def _watch_monitor(self, monitor: zmq.asyncio.Socket) -> None:
        """Follow connect/disconnect events of the SUB socket."""
        while True:
            message = await monitor.recv_multipart()
            event = parse_monitor_message(message)
            if event["event"] == zmq.EVENT_MONITOR_STOPPED:
                return
            self.apply_monitor_event(event["event"])

    def apply_monitor_event(self, event: int) -> None:
        """Update the connection state from a socket monitor event."""
        if not self._running:
            return
        if event in _CONNECTED_EVENTS:
            self._set_state(UpstreamState.CONNECTED)
        elif event in _DISCONNECTED_EVENTS:
            self._set_state(UpstreamState.DISCONNECTED)

    async def handle_frame(self, frame: bytes) -> bool:
        """
        Decode, validate and forward one frame.

        Args:
            frame: Raw upstream frame

        Returns:
            True if the frame was accepted and forwarded.
        """
        self.metrics.frames_received += 1
        self.metrics.last_frame_at = time.time()

        try:
            points = decode(frame)
        except DecodeError as e:
            self.metrics.decode_errors += 1
            logger.error(f"Error decoding MessagePack data: {e}")
            return False
        except ScanShapeError as e:
            self.metrics.shape_errors += 1
            logger.warning(f"Invalid LIDAR data received: {e}")
            return False

        if not points:
            self.metrics.empty_frames += 1
            logger.warning("Empty LIDAR data received")
            return False

        if logger.isEnabledFor(logging.DEBUG):
            sample = points[0]
            logger.debug(f"Raw LIDAR point sample: {sample!r}")
            logger.debug(f"Point count: {len(points)}")
            if isinstance(sample, dict):
                logger.debug(f"First few field names: {list(sample)}")

        self.metrics.batches_accepted += 1
        try:
            await self.on_scan(frame, len(points))
        except Exception as e:
            logger.error(f"Error broadcasting LIDAR data: {e}")
        return True
