#!/usr/bin/env python3
"""
Fake LIDAR Publisher
====================

Development stand-in for the upstream scan producer.

Publishes synthetic scans on a ZeroMQ PUB socket: each frame is a
MessagePack array of point maps ({x, y, z, intensity}) describing a
square room with an orbiting pillar. Every --empty-every frames an empty
array is sent, and every --garbage-every frames a malformed payload, to
exercise the bridge's validation.

Usage:
    python scripts/fake_publisher.py
    python scripts/fake_publisher.py --port 5551 --rate 10 --points 720
"""

import argparse
import logging
import math
import random
import time

import msgpack
import zmq


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


def make_scan(t: float, num_points: int, rng: random.Random) -> list:
    """One 360 degree sweep of a 5m room with a pillar orbiting at 0.4 rad/s."""
    points = []
    cx = 1.2 + 0.4 * math.cos(t * 0.4)
    cy = 0.8 + 0.4 * math.sin(t * 0.4)

    for i in range(num_points):
        angle = 2 * math.pi * i / num_points
        dx, dy = math.cos(angle), math.sin(angle)

        # Distance to the walls at +/-2.5m
        tx = 2.5 / abs(dx) if abs(dx) > 1e-9 else math.inf
        ty = 2.5 / abs(dy) if abs(dy) > 1e-9 else math.inf
        distance = min(tx, ty)

        # Ray / pillar intersection (radius 0.25m)
        proj = cx * dx + cy * dy
        perp_sq = cx * cx + cy * cy - proj * proj
        if proj > 0 and perp_sq < 0.0625:
            distance = min(distance, proj - math.sqrt(0.0625 - perp_sq))

        distance += rng.gauss(0.0, 0.01)
        points.append({
            "x": round(distance * dx, 4),
            "y": round(distance * dy, 4),
            "z": 0.0,
            "intensity": rng.randint(10, 255),
        })
    return points


def main():
    parser = argparse.ArgumentParser(description="Publish synthetic LIDAR scans over ZeroMQ")
    parser.add_argument("--bind", type=str, default="tcp://*", help="Bind address (default: tcp://*)")
    parser.add_argument("--port", type=int, default=5551, help="Bind port (default: 5551)")
    parser.add_argument("--rate", type=float, default=10.0, help="Scans per second (default: 10)")
    parser.add_argument("--points", type=int, default=720, help="Points per scan (default: 720)")
    parser.add_argument("--empty-every", type=int, default=0, help="Send an empty scan every N frames")
    parser.add_argument("--garbage-every", type=int, default=0, help="Send a malformed frame every N frames")
    args = parser.parse_args()

    context = zmq.Context()
    socket = context.socket(zmq.PUB)
    socket.setsockopt(zmq.SNDHWM, 10)
    socket.bind(f"{args.bind}:{args.port}")
    logger.info(f"Publishing {args.points}-point scans at {args.rate} Hz on {args.bind}:{args.port}")

    rng = random.Random(42)
    period = 1.0 / args.rate
    frame_count = 0
    start = time.time()

    try:
        while True:
            frame_count += 1
            if args.garbage_every and frame_count % args.garbage_every == 0:
                payload = b"\xc1\xc1\xc1"
            elif args.empty_every and frame_count % args.empty_every == 0:
                payload = msgpack.packb([])
            else:
                payload = msgpack.packb(make_scan(time.time() - start, args.points, rng))
            socket.send(payload)

            if frame_count % 100 == 0:
                logger.info(f"Published {frame_count} frames")
            time.sleep(period)
    except KeyboardInterrupt:
        logger.info("Publisher interrupted by user")
    finally:
        socket.close()
        context.term()
        logger.info(f"Published {frame_count} frames in total")


if __name__ == "__main__":
    main()
