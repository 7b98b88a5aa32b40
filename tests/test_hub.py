"""
Fan-out Hub Tests
=================
"""

import asyncio
import json
import logging

import msgpack
import pytest

from lidar_bridge.fanout import hub as hub_module
from lidar_bridge.fanout.hub import FanoutHub
from lidar_bridge.state import BridgeState
from lidar_bridge.stream.frame import ScanBatch

from conftest import make_frame


def scan_of(message: bytes) -> dict:
    event = msgpack.unpackb(message, raw=False)
    assert event["event"] == "lidar_scan"
    return event["data"]


class TestMembership:
    """Join/leave bookkeeping."""

    def test_join_sends_status_first(self, never_log):
        async def scenario():
            hub = FanoutHub(BridgeState(), status_message="hello", rng=never_log)
            channel = hub.join()
            return await channel.get(timeout=1.0)

        event = json.loads(asyncio.run(scenario()))
        assert event["event"] == "status"
        assert event["data"]["message"] == "hello"
        assert event["data"]["timestamp"].endswith("Z")

    def test_status_survives_overflow_before_first_read(self, never_log):
        async def scenario():
            hub = FanoutHub(BridgeState(), queue_size=1, rng=never_log)
            channel = hub.join()
            for count in (5, 6, 7):
                await hub.publish_scan(make_frame(count), count)
            first = await channel.get(timeout=1.0)
            second = await channel.get(timeout=1.0)
            return first, second, channel.dropped_count

        first, second, dropped = asyncio.run(scenario())
        assert isinstance(first, str)
        assert json.loads(first)["event"] == "status"
        # Only scans are subject to drop-oldest
        assert scan_of(second)["pointCount"] == 7
        assert dropped == 2

    def test_join_and_leave_update_shared_count(self, never_log):
        async def scenario():
            state = BridgeState()
            hub = FanoutHub(state, rng=never_log)
            counts = [state.consumer_count]
            first = hub.join()
            second = hub.join()
            counts.append(state.consumer_count)
            hub.leave(first.consumer_id)
            counts.append(state.consumer_count)
            hub.leave(second.consumer_id)
            counts.append(state.consumer_count)
            return counts, first.consumer_id != second.consumer_id

        counts, distinct = asyncio.run(scenario())
        assert counts == [0, 2, 1, 0]
        assert distinct

    def test_leave_is_idempotent(self, never_log):
        async def scenario():
            state = BridgeState()
            hub = FanoutHub(state, rng=never_log)
            channel = hub.join()
            first = hub.leave(channel.consumer_id)
            second = hub.leave(channel.consumer_id)
            unknown = hub.leave("consumer_999")
            return first, second, unknown, state.consumer_count, channel.closed

        first, second, unknown, count, closed = asyncio.run(scenario())
        assert (first, second, unknown) == (True, False, False)
        assert count == 0
        assert closed


class TestBroadcast:
    """Scan delivery to consumers."""

    def test_no_consumers_builds_nothing(self, never_log, monkeypatch):
        built = []

        class RecordingBatch:
            @staticmethod
            def from_frame(frame, point_count):
                built.append(point_count)
                return ScanBatch.from_frame(frame, point_count)

        monkeypatch.setattr(hub_module, "ScanBatch", RecordingBatch)

        async def scenario():
            hub = FanoutHub(BridgeState(), rng=never_log)
            delivered = await hub.publish_scan(make_frame(3), 3)
            return hub, delivered

        hub, delivered = asyncio.run(scenario())
        assert delivered == 0
        assert built == []
        assert hub.metrics.broadcasts == 0
        assert hub.metrics.deliveries == 0
        assert hub.metrics.skipped_no_consumers == 1

    def test_same_payload_to_every_consumer(self, never_log):
        frame = make_frame(5)

        async def scenario():
            hub = FanoutHub(BridgeState(), rng=never_log)
            channels = [hub.join() for _ in range(3)]
            for channel in channels:
                await channel.get()  # status
            delivered = await hub.publish_scan(frame, 5)
            messages = [await channel.get(timeout=1.0) for channel in channels]
            return delivered, messages

        delivered, messages = asyncio.run(scenario())
        assert delivered == 3
        # Encoded once, shared by every channel
        assert messages[0] is messages[1] is messages[2]
        data = scan_of(messages[0])
        assert data["pointCount"] == 5
        assert data["points"] == frame
        assert isinstance(data["timestamp"], int)

    def test_arrival_order_preserved(self, never_log):
        async def scenario():
            hub = FanoutHub(BridgeState(), queue_size=8, rng=never_log)
            channels = [hub.join() for _ in range(2)]
            for channel in channels:
                await channel.get()
            for count in (3, 1, 4, 2):
                await hub.publish_scan(make_frame(count), count)
            return [
                [scan_of(await channel.get(timeout=1.0))["pointCount"] for _ in range(4)]
                for channel in channels
            ]

        assert asyncio.run(scenario()) == [[3, 1, 4, 2], [3, 1, 4, 2]]

    def test_slow_consumer_loses_only_its_oldest(self, never_log):
        async def scenario():
            hub = FanoutHub(BridgeState(), queue_size=2, rng=never_log)
            slow = hub.join()
            fast = hub.join()
            await slow.get()
            await fast.get()

            fast_seen = []
            for count in range(1, 6):
                await hub.publish_scan(make_frame(count), count)
                fast_seen.append(scan_of(await fast.get(timeout=1.0))["pointCount"])

            slow_seen = [scan_of(await slow.get(timeout=1.0))["pointCount"] for _ in range(2)]
            return fast_seen, slow_seen, slow.dropped_count, hub.get_stats()

        fast_seen, slow_seen, dropped, stats = asyncio.run(scenario())
        assert fast_seen == [1, 2, 3, 4, 5]
        assert slow_seen == [4, 5]
        assert dropped == 3
        assert stats["dropped_messages"] == 3

    def test_closed_channel_does_not_block_others(self, never_log):
        async def scenario():
            state = BridgeState()
            hub = FanoutHub(state, rng=never_log)
            broken = hub.join()
            healthy = hub.join()
            await healthy.get()
            broken.close()

            delivered = await hub.publish_scan(make_frame(2), 2)
            message = await healthy.get(timeout=1.0)
            return delivered, message, hub, state.consumer_count

        delivered, message, hub, count = asyncio.run(scenario())
        assert delivered == 1
        assert scan_of(message)["pointCount"] == 2
        assert hub.metrics.delivery_failures == 1
        assert count == 1

    def test_unexpected_delivery_error_is_isolated(self, never_log):
        async def scenario():
            hub = FanoutHub(BridgeState(), rng=never_log)
            broken = hub.join()
            healthy = hub.join()
            await healthy.get()

            def explode(message):
                raise RuntimeError("socket gone")

            broken.put = explode
            delivered = await hub.publish_scan(make_frame(4), 4)
            message = await healthy.get(timeout=1.0)
            return delivered, message, hub.metrics.delivery_failures

        delivered, message, failures = asyncio.run(scenario())
        assert delivered == 1
        assert scan_of(message)["pointCount"] == 4
        assert failures == 1

    def test_broadcast_summary_logged_when_sampled(self, always_log, caplog):
        async def scenario():
            hub = FanoutHub(BridgeState(), rng=always_log)
            hub.join()
            await hub.broadcast(ScanBatch.from_frame(make_frame(5), 5))

        with caplog.at_level(logging.INFO, logger="lidar_bridge.fanout.hub"):
            asyncio.run(scenario())
        assert "Broadcasted scan: 5 points to 1 clients" in caplog.text

    def test_broadcast_summary_not_logged_when_not_sampled(self, never_log, caplog):
        async def scenario():
            hub = FanoutHub(BridgeState(), rng=never_log)
            hub.join()
            await hub.broadcast(ScanBatch.from_frame(make_frame(5), 5))

        with caplog.at_level(logging.INFO, logger="lidar_bridge.fanout.hub"):
            asyncio.run(scenario())
        assert "Broadcasted scan" not in caplog.text


class TestClose:
    """Hub shutdown."""

    def test_close_ends_channels_after_queued_messages(self, never_log):
        async def scenario():
            state = BridgeState()
            hub = FanoutHub(state, rng=never_log)
            channel = hub.join()
            await hub.publish_scan(make_frame(3), 3)
            closed = hub.close()
            messages = [message async for message in channel]
            return closed, messages, state.consumer_count

        closed, messages, count = asyncio.run(scenario())
        assert closed == 1
        assert len(messages) == 2
        assert json.loads(messages[0])["event"] == "status"
        assert scan_of(messages[1])["pointCount"] == 3
        assert count == 0

    def test_join_after_close_gets_status_then_end(self, never_log):
        async def scenario():
            state = BridgeState()
            hub = FanoutHub(state, rng=never_log)
            hub.close()
            channel = hub.join()
            messages = [message async for message in channel]
            return messages, state.consumer_count

        messages, count = asyncio.run(scenario())
        assert len(messages) == 1
        assert count == 0


class TestScanBatch:
    def test_timestamp_ms(self):
        batch = ScanBatch(received_at=1707321234.5678, point_count=1, payload=b"\x91\x01")
        assert batch.timestamp_ms == 1707321234567

    def test_immutable(self):
        batch = ScanBatch.from_frame(b"\x91\x01", 1)
        with pytest.raises(AttributeError):
            batch.point_count = 2
