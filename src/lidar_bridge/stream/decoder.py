"""
Scan Decoder
============

Decodes raw upstream frames (MessagePack) into a sequence of points.

Design Rules:
    - This is the ONLY place in the codebase that decodes frames
    - Points are opaque: their fields are never interpreted
    - Pure function, no side effects
"""

import logging
from typing import Any, List

import msgpack


logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Raised when a frame is not well-formed MessagePack."""
    pass


class ScanShapeError(Exception):
    """Raised when a frame decodes to something other than a point array."""
    pass


def decode(frame: bytes) -> List[Any]:
    """
    Decode a MessagePack frame into its list of points.

    Args:
        frame: Raw bytes received from the upstream publisher

    Returns:
        Points in wire order. May be empty.

    Raises:
        DecodeError: If the bytes are not a single well-formed MessagePack object
        ScanShapeError: If the decoded object is not an array
    """
    try:
        points = msgpack.unpackb(
            frame,
            raw=False,
            use_list=True,
            strict_map_key=False,
        )
    except (msgpack.exceptions.UnpackException, ValueError, TypeError) as e:
        raise DecodeError(f"Malformed frame ({len(frame)} bytes): {e}") from e

    if not isinstance(points, list):
        raise ScanShapeError(
            f"Expected an array of points, got {type(points).__name__}"
        )

    return points
