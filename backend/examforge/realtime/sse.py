"""
ExamForge - Server-Sent Events
Snapshot-then-updates stream for one live-update topic.
"""
import asyncio
import json
import logging
from collections.abc import AsyncIterator

from examforge.realtime.bus import EventBus

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: str, data) -> str:
    """One SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def format_comment(text: str = "keep-alive") -> str:
    return f": {text}\n\n"


async def live_updates(
    bus: EventBus,
    topic: str,
    snapshot: dict,
    keepalive: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield a ``snapshot`` event, then one ``update`` event per bus message,
    with a keep-alive comment after every idle ``keepalive`` seconds.

    When the subscription cannot be opened an ``error`` event is sent and
    the stream ends. Closing the generator detaches the listener.
    """
    yield format_event("snapshot", snapshot)

    queue: asyncio.Queue = asyncio.Queue()
    try:
        subscription = await bus.subscribe(topic, queue.put_nowait)
    except Exception as e:
        logger.warning("Live update subscribe to %s failed: %s", topic, e)
        yield format_event("error", {"message": "Failed to subscribe to live updates"})
        return

    try:
        while True:
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield format_comment()
                continue
            yield format_event("update", payload)
    finally:
        subscription.detach()
        await asyncio.shield(subscription.close())
