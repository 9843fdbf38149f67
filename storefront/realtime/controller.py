import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from quart import Blueprint, Response, jsonify, request

from ..common.config import settings
from ..common.errors import InvalidArgument
from ..common.redis_client import get_redis

bp = Blueprint("realtime", __name__)

_logger = logging.getLogger(__name__)


def _product_filter() -> Optional[Set[int]]:
    raw = request.args.get("product_id", "").strip()
    if not raw:
        return None
    try:
        return {int(p) for p in raw.split(",") if p.strip()}
    except ValueError:
        raise InvalidArgument("product_id must be a comma separated list of ids", {"product_id": raw})


def _decode(data: Any) -> Dict[str, Any]:
    try:
        payload = json.loads(data) if isinstance(data, (str, bytes)) else data
    except ValueError:
        return {"raw": data}
    return payload if isinstance(payload, dict) else {"raw": payload}


async def _close_pubsub(pubsub) -> None:
    if pubsub is None:
        return
    try:
        await pubsub.unsubscribe(settings.REDIS_STOCK_CHANNEL)
        await pubsub.close()
    except Exception as e:
        _logger.debug("Closing stock subscription failed | err=%s", e)


@bp.get("/events")
async def sse_events():
    """Server-sent stream of committed stock changes, optionally for some products only."""
    if not settings.REDIS_ENABLED:
        return jsonify({"ok": False, "error": "realtime_disabled", "message": "Stock events need Redis"}), 503
    wanted = _product_filter()

    async def gen():
        pubsub = None
        backoff = 1.0
        # Advise client on retry
        yield "retry: 3000\n\n"
        try:
            while True:
                try:
                    if pubsub is None:
                        r = await get_redis()
                        pubsub = r.pubsub(ignore_subscribe_messages=True)
                        await pubsub.subscribe(settings.REDIS_STOCK_CHANNEL)
                    message = await pubsub.get_message(timeout=5.0)
                    if message:
                        payload = _decode(message.get("data"))
                        if wanted is None or payload.get("product_id") in wanted:
                            yield f"event: stock\ndata: {json.dumps(payload)}\n\n"
                    else:
                        # Keep-alive to prevent closes by proxies
                        yield ": keep-alive\n\n"
                    backoff = 1.0
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    _logger.warning("Stock stream interrupted | err=%s retry_in=%ss", e, int(backoff))
                    yield f": redis-error, retrying in {int(backoff)}s\n\n"
                    await _close_pubsub(pubsub)
                    pubsub = None
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 15.0)
        finally:
            await _close_pubsub(pubsub)

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
        "Connection": "keep-alive",
    }
    return Response(gen(), mimetype="text/event-stream", headers=headers)
