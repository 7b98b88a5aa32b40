#!/usr/bin/env python3
"""
Bridge Integration Test Script
==============================

Standalone script that attaches to a running bridge as a WebSocket
consumer.

This script:
    1. Connects to the bridge's /ws/scans endpoint
    2. Runs for a configurable duration
    3. Logs scan stats every report interval
    4. Reports final summary

Prerequisites:
    - The bridge must be running (python -m lidar_bridge)
    - An upstream publisher should be running (scripts/fake_publisher.py)

Usage:
    python scripts/test_integration.py --duration 60
    python scripts/test_integration.py --url ws://localhost:3000/ws/scans
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time

import msgpack
import websockets


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


class ConsumerStats:
    """Counters collected by the test consumer."""

    def __init__(self) -> None:
        self.status_events = 0
        self.scans_received = 0
        self.points_received = 0
        self.count_mismatches = 0
        self.last_point_count = 0


def handle_message(message, stats: ConsumerStats) -> None:
    """Account for one message received from the bridge."""
    if isinstance(message, str):
        event = json.loads(message)
        if event.get("event") == "status":
            stats.status_events += 1
            logger.info(f"Status: {event['data']['message']} at {event['data']['timestamp']}")
        return

    event = msgpack.unpackb(message, raw=False)
    if event.get("event") != "lidar_scan":
        logger.warning(f"Unknown event: {event.get('event')}")
        return

    data = event["data"]
    points = msgpack.unpackb(data["points"], raw=False)
    if len(points) != data["pointCount"]:
        stats.count_mismatches += 1
        logger.warning(
            f"pointCount {data['pointCount']} does not match "
            f"{len(points)} decoded points"
        )
    stats.scans_received += 1
    stats.points_received += data["pointCount"]
    stats.last_point_count = data["pointCount"]


async def run_test(url: str, duration: int, report_interval: int) -> dict:
    """
    Run the integration test.

    Args:
        url: WebSocket URL of the bridge
        duration: Test duration in seconds
        report_interval: Seconds between progress reports

    Returns:
        Final stats dict
    """
    logger.info("=" * 60)
    logger.info("Bridge Integration Test")
    logger.info("=" * 60)
    logger.info(f"Bridge URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info(f"Report interval: {report_interval} seconds")
    logger.info("=" * 60)

    stats = ConsumerStats()
    start_time = time.time()
    last_report_time = start_time
    last_scan_count = 0

    try:
        async with websockets.connect(url, close_timeout=5) as ws:
            while time.time() - start_time < duration:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                    handle_message(message, stats)
                except asyncio.TimeoutError:
                    pass

                time_since_report = time.time() - last_report_time
                if time_since_report >= report_interval:
                    scans_since_last = stats.scans_received - last_scan_count
                    rate = scans_since_last / time_since_report

                    logger.info("-" * 40)
                    logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
                    logger.info(f"  Scans received: {stats.scans_received}")
                    logger.info(f"  Current rate: {rate:.1f} scans/s")
                    logger.info(f"  Last point count: {stats.last_point_count}")
                    logger.info(f"  Count mismatches: {stats.count_mismatches}")

                    last_report_time = time.time()
                    last_scan_count = stats.scans_received

            logger.info(f"Test duration ({duration}s) reached")
    except KeyboardInterrupt:
        logger.info("Test interrupted by user")
    except (OSError, websockets.exceptions.WebSocketException) as e:
        logger.error(f"Connection to bridge failed: {e}")

    total_time = time.time() - start_time
    avg_rate = stats.scans_received / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Status events: {stats.status_events}")
    logger.info(f"Scans received: {stats.scans_received}")
    logger.info(f"Average rate: {avg_rate:.1f} scans/s")
    logger.info(f"Points received: {stats.points_received}")
    logger.info(f"Count mismatches: {stats.count_mismatches}")
    logger.info("=" * 60)

    if stats.status_events == 1 and stats.scans_received > 0 and not stats.count_mismatches:
        logger.info("TEST PASSED - Scans received successfully")
    else:
        logger.error("TEST FAILED - No valid scans received")

    return {
        "duration": total_time,
        "status_events": stats.status_events,
        "scans_received": stats.scans_received,
        "avg_rate": avg_rate,
        "count_mismatches": stats.count_mismatches,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Integration test for the LIDAR bridge push channel"
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("LIDAR_BRIDGE_WS_URL", "ws://localhost:3000/ws/scans"),
        help="WebSocket URL of the bridge",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Test duration in seconds (default: 60)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between progress reports (default: 10)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_test(
        url=args.url,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["scans_received"] > 0 and not result["count_mismatches"] else 1)


if __name__ == "__main__":
    main()
