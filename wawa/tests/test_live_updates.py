import asyncio
import json
import logging
import threading
from datetime import datetime, timezone

import fakeredis
import pytest

from config import get_settings
from wawa.app.core import build_core, live_updates_from_settings
from wawa.app.domain import OrderStatus
from wawa.app.events import (
    ORDER_CREATED,
    ORDER_UPDATED,
    EventBus,
    RedisBroadcaster,
    safe_emit,
)
from wawa.app.services.checkout import Customer, NewLine


def _next_message(pubsub):
    for _ in range(20):
        message = pubsub.get_message(ignore_subscribe_messages=True, timeout=0.05)
        if message:
            return message
    return None


class Exploding:
    def emit(self, topic, payload):
        raise RuntimeError("socket server gone")


def test_event_bus_delivers_to_subscribers():
    bus = EventBus()
    queue = bus.subscribe(ORDER_UPDATED)
    other = bus.subscribe(ORDER_CREATED)

    bus.emit(ORDER_UPDATED, {"order_id": 1, "status": "confirmed"})

    assert queue.get_nowait() == {"order_id": 1, "status": "confirmed"}
    assert other.empty()
    assert bus.topics() == [ORDER_UPDATED]


def test_event_bus_keeps_only_recent_history():
    bus = EventBus(keep=50)
    for n in range(10_000):
        bus.emit(ORDER_UPDATED, {"order_id": n})

    assert len(bus.history) == 50
    assert bus.history[0][1] == {"order_id": 9950}
    assert bus.history[-1][1] == {"order_id": 9999}


def test_event_bus_wakes_loop_subscriber_from_worker_thread():
    bus = EventBus()

    async def listen():
        queue = bus.subscribe(ORDER_UPDATED)
        worker = threading.Thread(
            target=bus.emit, args=(ORDER_UPDATED, {"order_id": 3, "status": "ready"})
        )
        worker.start()
        try:
            return await asyncio.wait_for(queue.get(), timeout=2)
        finally:
            worker.join()

    assert asyncio.run(listen()) == {"order_id": 3, "status": "ready"}



def test_redis_broadcaster_publishes_json():
    client = fakeredis.FakeRedis(decode_responses=True)
    pubsub = client.pubsub()
    pubsub.subscribe("wawa:order:updated")

    at = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)
    RedisBroadcaster(client).emit(ORDER_UPDATED, {"order_id": 7, "at": at})

    message = _next_message(pubsub)
    assert message["channel"] == "wawa:order:updated"
    assert json.loads(message["data"]) == {"order_id": 7, "at": str(at)}


def test_redis_outage_is_logged_not_raised(caplog):
    server = fakeredis.FakeServer()
    server.connected = False
    broadcaster = RedisBroadcaster(fakeredis.FakeRedis(server=server))

    with caplog.at_level(logging.ERROR, logger="wawa.events"):
        broadcaster.emit(ORDER_UPDATED, {"order_id": 1})

    assert any("could not be published" in r.getMessage() for r in caplog.records)


def test_safe_emit_shields_caller(caplog):
    with caplog.at_level(logging.ERROR, logger="wawa.events"):
        safe_emit(Exploding(), ORDER_UPDATED, {"order_id": 1})
    assert caplog.records


def test_broken_live_updates_never_block_transitions(ledger, settings, clock):
    core = build_core(ledger, settings, live_updates=Exploding(), clock=clock)
    order = core.checkout.create_order(
        [NewLine(name="Pepper soup", price=3500, quantity=1)], Customer(user_id="user-1")
    )
    confirmed = core.state_machine.transition(order.id, "confirmed")
    assert confirmed.status is OrderStatus.CONFIRMED


@pytest.mark.parametrize(
    "backend,expected",
    [("memory", EventBus), ("redis", RedisBroadcaster)],
)
def test_backend_selected_from_settings(monkeypatch, backend, expected):
    monkeypatch.setenv("LIVE_UPDATES_BACKEND", backend)
    get_settings.cache_clear()
    try:
        assert isinstance(live_updates_from_settings(get_settings()), expected)
    finally:
        get_settings.cache_clear()
