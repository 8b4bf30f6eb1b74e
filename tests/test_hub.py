from __future__ import annotations

import asyncio

import pytest

from pyf1proxy._sse import KEEPALIVE_FRAME, format_event
from pyf1proxy.exceptions import SubscriberClosedError
from pyf1proxy.hub import BroadcastHub, Subscriber
from pyf1proxy.state.store import StateStore


class _BrokenSubscriber(Subscriber):
    def send(self, frame: str) -> None:
        raise SubscriberClosedError("connection reset")


def _drain(subscriber: Subscriber) -> list[str]:
    frames = []
    while subscriber.pending:
        frames.append(subscriber._queue.get_nowait())  # type: ignore[attr-defined]
    return frames


def test_register_sends_snapshot_when_state_exists() -> None:
    store = StateStore()
    store.merge({"LapCount": {"CurrentLap": 4}})
    hub = BroadcastHub(store)
    subscriber = Subscriber()

    hub.register(subscriber)

    assert hub.client_count == 1
    assert _drain(subscriber) == [format_event("initial", {"LapCount": {"CurrentLap": 4}})]


def test_register_sends_nothing_without_state() -> None:
    hub = BroadcastHub(StateStore())
    subscriber = Subscriber()
    hub.register(subscriber)
    assert subscriber.pending == 0


def test_failing_subscriber_does_not_affect_others() -> None:
    hub = BroadcastHub(StateStore())
    healthy = [Subscriber(name="a"), Subscriber(name="b")]
    broken = _BrokenSubscriber(name="broken")
    hub.register(healthy[0])
    hub.register(broken)
    hub.register(healthy[1])

    hub.broadcast("update", {"TrackStatus": {"Status": "2"}})

    frame = format_event("update", {"TrackStatus": {"Status": "2"}})
    assert _drain(healthy[0]) == [frame]
    assert _drain(healthy[1]) == [frame]
    assert hub.client_count == 2


def test_stalled_subscriber_is_dropped_when_queue_fills() -> None:
    hub = BroadcastHub(StateStore())
    stalled = Subscriber(maxsize=2)
    reader = Subscriber()
    hub.register(stalled)
    hub.register(reader)

    for lap in range(3):
        hub.broadcast("update", {"LapCount": {"CurrentLap": lap}})

    assert stalled.closed
    assert hub.client_count == 1
    assert len(_drain(reader)) == 3


def test_unregister_is_idempotent() -> None:
    hub = BroadcastHub(StateStore())
    subscriber = Subscriber()
    hub.register(subscriber)
    hub.unregister(subscriber)
    hub.unregister(subscriber)
    hub.unregister(Subscriber())
    assert hub.client_count == 0
    assert subscriber.closed


def test_send_after_close_raises() -> None:
    subscriber = Subscriber()
    subscriber.close()
    with pytest.raises(SubscriberClosedError):
        subscriber.send("data: x\n\n")


@pytest.mark.asyncio
async def test_next_frame_returns_none_after_close() -> None:
    subscriber = Subscriber()
    subscriber.send("a")
    assert await subscriber.next_frame() == "a"

    waiter = asyncio.create_task(subscriber.next_frame())
    await asyncio.sleep(0)
    subscriber.close()
    assert await asyncio.wait_for(waiter, 1.0) is None
    assert await subscriber.next_frame() is None


@pytest.mark.asyncio
async def test_keepalive_reaches_every_subscriber() -> None:
    hub = BroadcastHub(StateStore(), keepalive_interval=0.01)
    subscriber = Subscriber()
    hub.register(subscriber)
    hub.start()
    try:
        frame = await asyncio.wait_for(subscriber.next_frame(), 1.0)
    finally:
        await hub.stop()
    assert frame == KEEPALIVE_FRAME
    assert subscriber.closed
    assert hub.client_count == 0
