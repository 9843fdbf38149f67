"""Best-effort order event publishing to Kafka."""
import json

import pytest

from storefront.common import kafka_client
from storefront.common.config import settings


class FakeProducer:
    instances = []
    fail = False

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sent = []
        self.stopped = False
        FakeProducer.instances.append(self)

    async def start(self):
        if FakeProducer.fail:
            raise ConnectionError("broker down")

    async def stop(self):
        self.stopped = True

    async def send_and_wait(self, topic, value):
        self.sent.append((topic, value))


@pytest.fixture
def kafka(monkeypatch):
    FakeProducer.instances = []
    FakeProducer.fail = False
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(kafka_client, "AIOKafkaProducer", FakeProducer)
    monkeypatch.setattr(kafka_client, "_producer", None)
    monkeypatch.setattr(kafka_client, "_retry_after", 0.0)
    monkeypatch.setattr(kafka_client.asyncio, "sleep", fake_sleep)
    monkeypatch.setattr(settings, "KAFKA_ENABLED", True)
    monkeypatch.setattr(settings, "KAFKA_CONNECT_ATTEMPTS", 3)
    return sleeps


async def test_disabled_publish_is_a_no_op(kafka, monkeypatch):
    monkeypatch.setattr(settings, "KAFKA_ENABLED", False)
    assert await kafka_client.publish_order_event("order_created", {"id": 1}) is False
    assert FakeProducer.instances == []


async def test_publish_sends_envelope(kafka):
    assert await kafka_client.publish_order_event("order_created", {"id": 1, "order_id": "ORDER-1-A"})

    producer = FakeProducer.instances[0]
    topic, value = producer.sent[0]
    assert topic == settings.ORDER_EVENTS_TOPIC
    event = json.loads(value)
    assert event["event_type"] == "order_created"
    assert event["data"] == {"id": 1, "order_id": "ORDER-1-A"}
    assert kafka == []


async def test_failed_start_stops_every_producer(kafka):
    FakeProducer.fail = True

    with pytest.raises(ConnectionError):
        await kafka_client.get_producer()

    assert len(FakeProducer.instances) == 3
    assert all(p.stopped for p in FakeProducer.instances)
    assert kafka == [1.0, 2.0]


async def test_startup_failure_is_logged_not_raised(kafka):
    FakeProducer.fail = True
    await kafka_client.start_producer()
    assert kafka_client._producer is None


async def test_publish_does_not_retry_a_down_broker(kafka):
    FakeProducer.fail = True

    assert await kafka_client.publish_order_event("order_created", {"id": 1}) is False
    assert len(FakeProducer.instances) == 1
    assert kafka == []

    # within the cooldown no new connection is attempted
    assert await kafka_client.publish_order_event("order_deleted", {"id": 1}) is False
    assert len(FakeProducer.instances) == 1


async def test_publish_reconnects_after_cooldown(kafka, monkeypatch):
    FakeProducer.fail = True
    await kafka_client.publish_order_event("order_created", {"id": 1})

    FakeProducer.fail = False
    monkeypatch.setattr(kafka_client, "_retry_after", 0.0)
    assert await kafka_client.publish_order_event("order_created", {"id": 2})
    assert len(FakeProducer.instances) == 2
