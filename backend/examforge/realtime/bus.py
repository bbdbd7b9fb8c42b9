"""
ExamForge - Event Bus
Best-effort status fan-out over Redis pub/sub.

One Redis channel subscription per topic, shared by every local listener
of that topic. The first listener opens it, the last release closes it.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[dict], Any]


class _Handle:
    """Registry entry; identity lets the same callable subscribe twice."""
    __slots__ = ("listener",)

    def __init__(self, listener: Listener):
        self.listener = listener


class Subscription:
    """
    Disposer returned by :meth:`EventBus.subscribe`.

    ``detach()`` stops delivery immediately and is safe to call from a
    ``finally`` block; awaiting ``close()`` (or the subscription itself)
    also releases the shared Redis channel when this was the last listener.
    """

    def __init__(self, bus: "EventBus", topic: str, handle: _Handle):
        self.bus = bus
        self.topic = topic
        self._handle = handle
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def detach(self) -> None:
        self.bus._detach(self.topic, self._handle)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.detach()
        await self.bus._release(self.topic)

    async def __call__(self) -> None:
        await self.close()


class EventBus:
    """
    Publish/subscribe of status events.

    ``publish`` never raises. Listeners are plain callables invoked on the
    event loop; one listener raising does not affect the others.
    """

    def __init__(self, redis, poll_interval: float = 1.0):
        self.redis = redis
        self.poll_interval = poll_interval
        self._pubsub = None
        self._listeners: dict[str, set[_Handle]] = {}
        self._lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task] = None
        self._closed = False

    async def publish(self, topic: str, payload: dict) -> None:
        try:
            await self.redis.publish(topic, json.dumps(payload, default=str))
        except Exception as e:
            logger.warning("Event publish to %s failed: %s", topic, e)

    async def subscribe(self, topic: str, listener: Listener) -> Subscription:
        """
        Register ``listener`` for ``topic``.

        Raises whatever the transport raises when the channel cannot be
        opened; the registry is left untouched in that case.
        """
        if self._closed:
            raise RuntimeError("EventBus is closed")

        handle = _Handle(listener)
        async with self._lock:
            listeners = self._listeners.get(topic)
            if listeners is None:
                if self._pubsub is None:
                    self._pubsub = self.redis.pubsub()
                await self._pubsub.subscribe(topic)
                listeners = self._listeners[topic] = set()
                logger.debug("Opened channel %s", topic)
            listeners.add(handle)
            self._ensure_reader()
        return Subscription(self, topic, handle)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    @property
    def topics(self) -> list[str]:
        return list(self._listeners)

    def _detach(self, topic: str, handle: _Handle) -> None:
        listeners = self._listeners.get(topic)
        if listeners is not None:
            listeners.discard(handle)

    async def _release(self, topic: str) -> None:
        async with self._lock:
            listeners = self._listeners.get(topic)
            if listeners is None or listeners:
                return
            del self._listeners[topic]
            try:
                await self._pubsub.unsubscribe(topic)
                logger.debug("Closed channel %s", topic)
            except Exception as e:
                logger.warning("Unsubscribe from %s failed: %s", topic, e)

    def dispatch(self, topic: str, raw: Any) -> int:
        """Deliver one raw message to every listener of ``topic``; returns the delivery count."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            payload = {"raw": raw}

        delivered = 0
        for handle in list(self._listeners.get(topic, ())):
            try:
                handle.listener(payload)
                delivered += 1
            except Exception:
                logger.exception("Listener for %s raised", topic)
        return delivered

    def _ensure_reader(self) -> None:
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._read_loop(), name="event-bus-reader")

    async def _read_loop(self) -> None:
        while not self._closed:
            if not self._listeners:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_interval,
                )
            except Exception as e:
                logger.warning("Event bus read failed: %s", e)
                await asyncio.sleep(self.poll_interval)
                continue

            if not message or message.get("type") != "message":
                continue
            channel = message.get("channel")
            if isinstance(channel, bytes):
                channel = channel.decode("utf-8")
            self.dispatch(channel, message.get("data"))

    async def close(self) -> None:
        """Stop the reader and drop the Redis pub/sub connection."""
        self._closed = True
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._listeners.clear()
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
