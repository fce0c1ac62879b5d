# events.py

"""Live-update broadcasting for order and tab changes.

The core only depends on the :class:`LiveUpdates` protocol. ``EventBus`` keeps
subscribers in-process (tests, single worker); ``RedisBroadcaster`` publishes
to Redis so socket servers in other processes can fan the event out to
browsers. Emission is best-effort: failures are logged and never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple

import redis

logger = logging.getLogger("wawa.events")

ORDER_CREATED = "order:created"
ORDER_UPDATED = "order:updated"
ORDER_CANCELLED = "order:cancelled"
TAB_UPDATED = "tab:updated"


class LiveUpdates(Protocol):
    """Anything able to push a topic/payload pair to live subscribers."""

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        """Broadcast ``payload`` under ``topic``; must not raise."""


class EventBus:
    """Dispatch events to subscribers via :class:`asyncio.Queue` instances.

    ``emit`` is called from request worker threads, so each queue is fed on
    the event loop it was created on. Only the last ``keep`` events are
    retained in ``history``.
    """

    def __init__(self, keep: int = 1000) -> None:
        self._subs: Dict[
            str, List[Tuple[asyncio.Queue, Optional[asyncio.AbstractEventLoop]]]
        ] = defaultdict(list)
        self.history: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=keep)

    def subscribe(self, name: str) -> asyncio.Queue:
        """Register interest in ``name`` events and return a queue."""

        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        queue: asyncio.Queue = asyncio.Queue()
        self._subs[name].append((queue, loop))
        return queue

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        """Broadcast ``payload`` to all subscribers of ``topic``."""

        self.history.append((topic, payload))
        for queue, loop in self._subs.get(topic, []):
            if loop is None or _on_loop(loop):
                _put(queue, topic, payload)
            elif loop.is_closed():
                logger.warning("subscriber loop closed; dropping %s", topic)
            else:
                loop.call_soon_threadsafe(_put, queue, topic, payload)

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.history]


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


def _put(queue: asyncio.Queue, topic: str, payload: Dict[str, Any]) -> None:
    try:
        queue.put_nowait(payload)
    except asyncio.QueueFull:
        logger.warning("subscriber queue full; dropping %s", topic)


class RedisBroadcaster:
    """Publish events as JSON on ``<prefix>:<topic>`` Redis channels."""

    def __init__(self, client: redis.Redis, prefix: str = "wawa") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "wawa") -> "RedisBroadcaster":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix)

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        channel = f"{self._prefix}:{topic}"
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
        except redis.RedisError:
            logger.exception("live update %s could not be published", topic)


def safe_emit(channel: LiveUpdates, topic: str, payload: Dict[str, Any]) -> None:
    """Emit through ``channel`` shielding the caller from its failures."""

    try:
        channel.emit(topic, payload)
    except Exception:  # collaborator is untrusted; the core path must go on
        logger.exception("live update %s failed", topic)


__all__ = [
    "LiveUpdates",
    "EventBus",
    "RedisBroadcaster",
    "safe_emit",
    "ORDER_CREATED",
    "ORDER_UPDATED",
    "ORDER_CANCELLED",
    "TAB_UPDATED",
]
