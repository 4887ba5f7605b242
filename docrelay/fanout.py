"""Fan-out of pending-item events to live Server-Sent Events subscribers."""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from .models import PendingView

logger = structlog.get_logger()

_ids = itertools.count(1)


class ChannelClosed(Exception):
    """The subscriber can no longer receive events."""


class EventChannel:
    """One subscriber: a bounded queue drained by an SSE response.

    A full queue means the client stopped reading; the write fails and
    the hub drops the channel instead of buffering without bound.
    """

    def __init__(self, maxsize: int) -> None:
        self.id = next(_ids)
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, payload: str) -> None:
        if self._closed:
            raise ChannelClosed(f"channel {self.id} is closed")
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull as exc:
            raise ChannelClosed(f"channel {self.id} is not draining") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def receive(self) -> str | None:
        """Next payload, or ``None`` once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()


class NotificationHub:
    """Set of subscribed channels; delivery order across them is unspecified."""

    def __init__(self, queue_size: int = 16) -> None:
        self._queue_size = queue_size
        self._channels: set[EventChannel] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._channels)

    def subscribe(self) -> EventChannel:
        """Register a new channel and send it the connection-established event."""
        channel = EventChannel(self._queue_size)
        self._channels.add(channel)
        channel.send(_encode({"type": "connected"}))
        logger.info("subscriber_connected", channel=channel.id, subscribers=len(self._channels))
        return channel

    def unsubscribe(self, channel: EventChannel) -> None:
        """Remove *channel*; called from the channel's own close path."""
        channel.close()
        if channel in self._channels:
            self._channels.discard(channel)
            logger.info("subscriber_disconnected", channel=channel.id, subscribers=len(self._channels))

    def notify(self, view: PendingView) -> int:
        """Push a pending-item event (no raw bytes) to every subscriber."""
        event = {"type": "pending", **view.model_dump(mode="json", by_alias=True)}
        return self.broadcast(event)

    def broadcast(self, event: dict[str, Any]) -> int:
        """Write *event* to every channel.  Returns the number of deliveries."""
        payload = _encode(event)
        delivered = 0
        for channel in list(self._channels):
            try:
                channel.send(payload)
            except ChannelClosed as exc:
                logger.warning("subscriber_dropped", channel=channel.id, reason=str(exc))
                self.unsubscribe(channel)
                continue
            delivered += 1
        logger.debug("event_broadcast", event_type=event.get("type"), delivered=delivered)
        return delivered

    def close_all(self) -> None:
        for channel in list(self._channels):
            self.unsubscribe(channel)


def _encode(event: dict[str, Any]) -> str:
    return json.dumps(event, ensure_ascii=False)


def format_sse(payload: str) -> str:
    """Frame one JSON payload as a Server-Sent Events message."""
    return f"data: {payload}\n\n"


async def sse_stream(
    hub: NotificationHub,
    channel: EventChannel,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """Yield SSE frames for *channel* until it closes.

    A comment frame is sent when nothing happened for
    *keepalive_seconds*, so idle proxies keep the connection open.
    The channel is unsubscribed when the stream ends for any reason,
    including the client going away.
    """
    try:
        while True:
            try:
                payload = await asyncio.wait_for(channel.receive(), timeout=keepalive_seconds)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            if payload is None:
                return
            yield format_sse(payload)
    finally:
        hub.unsubscribe(channel)
