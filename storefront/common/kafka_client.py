import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer

from .config import settings

_logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None
_producer_lock = asyncio.Lock()
# Monotonic time before which publishes skip reconnecting to a broker that just failed
_retry_after = 0.0


async def _stop_quietly(producer: AIOKafkaProducer) -> None:
    try:
        await producer.stop()
    except Exception as e:
        _logger.debug("Stopping unstarted Kafka producer failed | err=%s", e)


async def get_producer(attempts: Optional[int] = None) -> AIOKafkaProducer:
    global _producer, _retry_after
    if _producer is None:
        async with _producer_lock:
            if _producer is None:
                attempts = max(1, attempts or settings.KAFKA_CONNECT_ATTEMPTS)
                backoff = 1.0
                last_exc: Optional[BaseException] = None
                for attempt in range(1, attempts + 1):
                    producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
                    try:
                        await producer.start()
                    except Exception as e:
                        last_exc = e
                        await _stop_quietly(producer)
                        if attempt < attempts:
                            await asyncio.sleep(backoff)
                            backoff = min(backoff * 2, 30.0)
                        continue
                    _producer = producer
                    break
                if _producer is None:
                    _retry_after = time.monotonic() + settings.KAFKA_RETRY_COOLDOWN
                    # Propagate the last error after retries
                    raise last_exc or RuntimeError("Kafka producer start failed")
    return _producer


async def start_producer() -> None:
    """Connect at startup so requests never wait on the start-up retries."""
    if not settings.KAFKA_ENABLED:
        return
    try:
        await get_producer()
    except Exception as e:
        _logger.warning("Kafka unavailable at startup, order events deferred | err=%s", e)
        return
    _logger.info("Kafka producer started | servers=%s", settings.KAFKA_BOOTSTRAP_SERVERS)


async def close_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None


async def publish_order_event(event_type: str, data: Dict[str, Any]) -> bool:
    """Publish an order lifecycle event after commit. Never raises."""
    if not settings.KAFKA_ENABLED:
        return False
    payload = {
        "event_type": event_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if _producer is None and time.monotonic() < _retry_after:
        _logger.debug("Kafka recently unreachable, order event dropped | type=%s", event_type)
        return False
    try:
        producer = await get_producer(attempts=1)
        await producer.send_and_wait(
            settings.ORDER_EVENTS_TOPIC, json.dumps(payload, default=str).encode("utf-8")
        )
    except Exception as e:
        _logger.warning("Order event not published | type=%s err=%s", event_type, e)
        return False
    _logger.info("Published order event | type=%s topic=%s", event_type, settings.ORDER_EVENTS_TOPIC)
    return True
