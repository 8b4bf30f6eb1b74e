"""Broadcast hub: fans state frames out to every connected stream client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pyf1proxy._scheduler import Scheduler
from pyf1proxy._sse import KEEPALIVE_FRAME, format_event
from pyf1proxy.exceptions import SubscriberClosedError
from pyf1proxy.state.store import StateStore

_logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 1000


class Subscriber:
    """One stream client, as a bounded queue of encoded frames.

    The HTTP handler drains the queue with :meth:`next_frame`.  A client that
    stops reading fills its queue; the next :meth:`send` then closes the
    subscriber and raises, so a stalled client never holds up anyone else.
    """

    def __init__(self, *, maxsize: int = _DEFAULT_QUEUE_SIZE, name: str = "") -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.name = name

    def __repr__(self) -> str:
        return f"Subscriber({self.name or id(self)!r}, pending={self._queue.qsize()}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, frame: str) -> None:
        if self._closed:
            raise SubscriberClosedError(f"{self!r} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            self.close()
            raise SubscriberClosedError(f"{self!r} is too far behind") from exc

    async def next_frame(self) -> str | None:
        """Next frame to write, or ``None`` once the subscriber is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Close and discard undelivered frames.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)


class BroadcastHub:
    """Registry of subscribers plus the keepalive timer.

    All methods except :meth:`start` and :meth:`stop` are synchronous: a
    registration (snapshot + ``initial`` frame) can never interleave with a
    merge and its ``update`` broadcast.

    Parameters
    ----------
    store : StateStore
        Source of the snapshot sent to new subscribers.
    keepalive_interval : float
        Seconds between ``: keepalive`` comment frames.
    """

    def __init__(self, store: StateStore, *, keepalive_interval: float = 15.0) -> None:
        self._store = store
        self._keepalive_interval = keepalive_interval
        self._subscribers: set[Subscriber] = set()
        self._scheduler = Scheduler(logger=_logger)

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    def register(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)
        _logger.debug("Subscriber connected (%d total)", len(self._subscribers))
        if not self._store.has_state:
            return
        try:
            subscriber.send(format_event("initial", self._store.snapshot()))
        except SubscriberClosedError:
            _logger.debug("Dropping %r before its initial frame", subscriber)
            self.unregister(subscriber)

    def unregister(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            return
        self._subscribers.discard(subscriber)
        subscriber.close()
        _logger.debug("Subscriber disconnected (%d total)", len(self._subscribers))

    def broadcast(self, event: str, payload: Any) -> None:
        """Encode once and queue the frame on every subscriber."""
        self._send_all(format_event(event, payload))

    def _send_all(self, frame: str) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber.send(frame)
            except SubscriberClosedError:
                _logger.debug("Dropping unresponsive %r", subscriber)
                self.unregister(subscriber)

    async def _keepalive(self) -> None:
        self._send_all(KEEPALIVE_FRAME)

    def start(self) -> None:
        self._scheduler.every(
            self._keepalive_interval,
            self._keepalive,
            name="sse-keepalive",
            delay=self._keepalive_interval,
        )

    async def stop(self) -> None:
        await self._scheduler.cancel_all()
        for subscriber in list(self._subscribers):
            self.unregister(subscriber)
