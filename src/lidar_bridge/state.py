"""
Bridge State
============

Single synchronized holder for the state shared between the upstream
subscriber, the fan-out hub and the health reporter.

Design Rules:
    - upstream_connected has one writer (the subscriber)
    - consumer_count has one writer (the hub)
    - Readers take a snapshot; nothing here ever blocks on I/O
"""

import threading
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    """Point-in-time copy of the shared bridge state."""

    upstream_connected: bool
    consumer_count: int


class BridgeState:
    """
    Mutex-guarded connection flag and consumer count.

    Example:
        state = BridgeState()
        state.set_upstream_connected(True)
        snapshot = state.snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._upstream_connected: bool = False
        self._consumer_count: int = 0

    @property
    def upstream_connected(self) -> bool:
        with self._lock:
            return self._upstream_connected

    @property
    def consumer_count(self) -> int:
        with self._lock:
            return self._consumer_count

    def set_upstream_connected(self, connected: bool) -> bool:
        """
        Set the upstream flag.

        Returns:
            True if the value changed.
        """
        with self._lock:
            changed = self._upstream_connected != connected
            self._upstream_connected = connected
            return changed

    def set_consumer_count(self, count: int) -> None:
        if count < 0:
            raise ValueError("consumer count must be non-negative")
        with self._lock:
            self._consumer_count = count

    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return StateSnapshot(
                upstream_connected=self._upstream_connected,
                consumer_count=self._consumer_count,
            )
