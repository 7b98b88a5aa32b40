"""
Test Configuration
==================

Pytest fixtures and test configuration for the LIDAR bridge.
"""

import socket

import msgpack
import pytest


def make_points(count: int) -> list:
    """Point maps in the shape the upstream publisher sends."""
    return [
        {"x": float(i), "y": float(i) * 0.5, "z": 0.0, "intensity": i % 256}
        for i in range(count)
    ]


def make_frame(count: int) -> bytes:
    """MessagePack frame holding `count` points."""
    return msgpack.packb(make_points(count))


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FixedRandom:
    """Stand-in random source returning a fixed value."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def frame_factory():
    """Provide the frame builder."""
    return make_frame


@pytest.fixture
def never_log():
    """Random source that never triggers the broadcast summary."""
    return FixedRandom(1.0)


@pytest.fixture
def always_log():
    """Random source that always triggers the broadcast summary."""
    return FixedRandom(0.0)


@pytest.fixture
def unused_endpoint():
    """tcp endpoint with nothing listening on it."""
    return f"tcp://127.0.0.1:{free_port()}"
