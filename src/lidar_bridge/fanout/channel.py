"""
Consumer Channel
================

Bounded outbound queue owned by one downstream consumer.

The hub writes into channels without ever awaiting a consumer, and each
consumer's sender task drains its own channel onto its WebSocket. A slow
consumer therefore only ever loses its own oldest messages.

Design Rules:
    - Fixed maximum size (drops oldest on overflow)
    - put never blocks
    - close() lets already-queued messages drain before the end marker
    - An optional greeting is delivered first and never dropped
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Union


logger = logging.getLogger(__name__)

Message = Union[str, bytes]

_CLOSED = object()


class ChannelClosedError(Exception):
    """Raised when delivering into a channel that has been closed."""
    pass


class ConsumerChannel:
    """
    Async-safe bounded queue of outbound messages for one consumer.

    Text messages (str) and binary messages (bytes) are queued as-is;
    the same bytes object may sit in many channels at once.

    Example:
        channel = ConsumerChannel("consumer_1", maxsize=16)

        # Hub side
        channel.put(message)

        # Sender side
        async for message in channel:
            await websocket.send_bytes(message)
    """

    def __init__(
        self,
        consumer_id: str,
        maxsize: int = 16,
        greeting: Optional[Message] = None,
    ) -> None:
        """
        Initialize consumer channel.

        Args:
            consumer_id: Hub-assigned identifier
            maxsize: Maximum queued messages. Must be >= 1.
            greeting: Message returned by the first get(), outside maxsize
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self.consumer_id = consumer_id
        self._maxsize = maxsize
        # One extra slot so the close marker always fits
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._closed: bool = False
        self._dropped_count: int = 0
        self._total_put: int = 0
        self._greeting: Optional[Message] = greeting

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        """Current number of queued messages."""
        pending = 1 if self._greeting is not None else 0
        return self._queue.qsize() + pending

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped_count(self) -> int:
        """Number of messages dropped due to overflow."""
        return self._dropped_count

    def put(self, message: Message) -> bool:
        """
        Queue a message, dropping the oldest if full.

        Args:
            message: Text or binary message

        Returns:
            True if queued without dropping, False if the oldest
            message was dropped to make room.

        Raises:
            ChannelClosedError: If the channel has been closed
        """
        if self._closed:
            raise ChannelClosedError(f"Channel {self.consumer_id} is closed")

        self._total_put += 1
        dropped = False

        if self._queue.qsize() >= self._maxsize:
            try:
                self._queue.get_nowait()
                self._dropped_count += 1
                dropped = True
                logger.warning(
                    f"Consumer {self.consumer_id} is behind, dropped oldest message. "
                    f"Total dropped: {self._dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(message)
        return not dropped

    async def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """
        Get next message.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next message, or None on timeout or once the channel is closed
            and drained.
        """
        if self._greeting is not None:
            greeting, self._greeting = self._greeting, None
            return greeting

        try:
            if timeout is not None:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            else:
                item = await self._queue.get()
        except asyncio.TimeoutError:
            return None

        if item is _CLOSED:
            # Keep the marker for any later reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        """
        Close the channel.

        Messages already queued are still delivered; readers see the end
        of the channel after them. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[Message]:
        """Yield queued messages until the channel is closed and drained."""
        while True:
            message = await self.get()
            if message is None:
                return
            yield message

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
