import logging
import time
from datetime import datetime, timezone

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from quart import Quart, jsonify, request
from werkzeug.exceptions import HTTPException

from .cart.controller import bp as cart_bp
from .common.config import settings
from .common.database import dispose_engine, init_db, init_engine
from .common.errors import Internal, StoreError
from .common.kafka_client import close_producer, start_producer
from .common.redis_client import close_redis
from .inventory.controller import bp as inventory_bp
from .orders.controller import admin_bp as admin_orders_bp
from .orders.controller import bp as orders_bp
from .realtime.controller import bp as realtime_bp

log = logging.getLogger(__name__)

# Basic metrics with proper buckets for latency
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float("inf"))
)


def create_app() -> Quart:
    app = Quart(__name__)

    # Blueprints
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(realtime_bp)

    @app.errorhandler(StoreError)
    async def handle_store_error(error: StoreError):
        if error.status_code >= 500:
            log.error("%s %s failed | %s", request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    async def handle_http_error(error: HTTPException):
        kind = (error.name or "error").lower().replace(" ", "_")
        return jsonify({"ok": False, "error": kind, "message": error.description}), error.code

    @app.errorhandler(Exception)
    async def handle_unexpected(error: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.path)
        message = "Server error" if settings.is_production else str(error)
        return jsonify(Internal(message).to_dict()), 500

    @app.before_request
    async def before_request():
        request._start_time = time.time()
        log.info(f"[Instance {settings.INSTANCE_ID}] {request.method} {request.path}")

    @app.after_request
    async def after_request(response):
        try:
            if hasattr(request, "_start_time"):
                duration = time.time() - request._start_time

                # URL rule keeps label cardinality bounded (/orders/<ref>, not every id)
                endpoint = request.url_rule.rule if request.url_rule is not None else "unmatched"

                REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)
                REQUEST_COUNT.labels(
                    method=request.method,
                    endpoint=endpoint,
                    status=str(response.status_code)
                ).inc()

                response.headers["X-Instance-ID"] = settings.INSTANCE_ID
        except Exception as e:
            log.error(f"Error recording metrics: {e}")
        return response

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health():
        return jsonify({"status": "ok"})

    @app.get("/")
    async def index():
        return jsonify({
            "ok": True,
            "message": "Storefront API",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.before_serving
    async def startup():
        logging.basicConfig(level=settings.LOG_LEVEL)
        log.info("Initializing database...")
        init_engine()
        await init_db()
        await start_producer()
        if settings.SEED_SAMPLE_DATA:
            from .seed import seed_products

            await seed_products()
        log.info("Database ready.")

    @app.after_serving
    async def shutdown():
        await close_producer()
        await close_redis()
        await dispose_engine()
        log.info("Shutdown complete.")

    return app
