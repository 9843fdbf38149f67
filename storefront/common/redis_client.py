import asyncio
import json
import logging
import ssl
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from .config import settings

_logger = logging.getLogger(__name__)

_redis: Optional[Redis] = None
_lock = asyncio.Lock()


def _connection_kwargs() -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "host": settings.REDIS_HOST,
        "port": settings.REDIS_PORT,
        "username": settings.REDIS_USERNAME or None,
        "password": settings.REDIS_PASSWORD or None,
        "db": settings.REDIS_DB,
        "decode_responses": True,
        "health_check_interval": 30,
    }
    if settings.REDIS_SSL:
        # Managed Redis endpoints in dev use self-signed certificates
        kwargs.update({"ssl": True, "ssl_cert_reqs": ssl.CERT_NONE})
    return kwargs


async def get_redis() -> Redis:
    global _redis
    if _redis is None:
        async with _lock:
            if _redis is None:
                try:
                    _redis = Redis(**_connection_kwargs())
                    await _redis.ping()
                    _logger.info(
                        "Connected to Redis at %s:%s (SSL=%s)",
                        settings.REDIS_HOST,
                        settings.REDIS_PORT,
                        settings.REDIS_SSL,
                    )
                except Exception as e:
                    _logger.error("Failed to connect to Redis: %s", str(e))
                    _redis = None
                    raise
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        try:
            await _redis.close()
        finally:
            _redis = None


async def publish_stock_update(product_id: int, stock: int, size_stock: Optional[Dict[str, Any]] = None) -> bool:
    """Notify realtime consumers of a committed stock change. Never raises."""
    if not settings.REDIS_ENABLED:
        return False
    payload: Dict[str, Any] = {"product_id": product_id, "stock": stock}
    if size_stock:
        payload["size_stock"] = size_stock
    try:
        r = await get_redis()
        await r.publish(settings.REDIS_STOCK_CHANNEL, json.dumps(payload))
    except Exception as e:
        _logger.warning("Stock update not published | product_id=%s err=%s", product_id, e)
        return False
    _logger.debug("Published stock update | product_id=%s stock=%s", product_id, stock)
    return True
