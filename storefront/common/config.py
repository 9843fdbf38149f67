import os
from dataclasses import dataclass


def _get_bool(env_name: str, default: bool = False) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class Settings:
    # App
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    APP_ENV: str = os.getenv("APP_ENV", "production")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    INSTANCE_ID: str = os.getenv("INSTANCE_ID", "unknown")

    # Database (SQLite by default in a Docker volume)
    DB_URL: str = os.getenv("DB_URL", "sqlite+aiosqlite:////data/data.db")
    DB_ECHO: bool = _get_bool("DB_ECHO", False)
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "0"))
    # Seconds a SQLite connection waits on a locked database
    DB_BUSY_TIMEOUT: float = float(os.getenv("DB_BUSY_TIMEOUT", "15"))

    # Inventory
    STOCK_UPDATE_ATTEMPTS: int = int(os.getenv("STOCK_UPDATE_ATTEMPTS", "5"))

    # Auth
    JWT_SECRET: str = os.getenv("JWT_SECRET", "secret123")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Redis
    REDIS_ENABLED: bool = _get_bool("REDIS_ENABLED", False)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "redis")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_USERNAME: str = os.getenv("REDIS_USERNAME", "")
    REDIS_PASSWORD: str = os.getenv("REDIS_PASSWORD", "")
    REDIS_SSL: bool = _get_bool("REDIS_SSL", False)
    REDIS_STOCK_CHANNEL: str = os.getenv("REDIS_STOCK_CHANNEL", "stock-updates")

    # Kafka
    KAFKA_ENABLED: bool = _get_bool("KAFKA_ENABLED", False)
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
    KAFKA_CONNECT_ATTEMPTS: int = int(os.getenv("KAFKA_CONNECT_ATTEMPTS", "3"))
    # Seconds publishes skip a broker that failed to connect
    KAFKA_RETRY_COOLDOWN: float = float(os.getenv("KAFKA_RETRY_COOLDOWN", "30"))
    ORDER_EVENTS_TOPIC: str = os.getenv("ORDER_EVENTS_TOPIC", "order-events")

    # Seeding
    SEED_SAMPLE_DATA: bool = _get_bool("SEED_SAMPLE_DATA", False)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() == "production"


settings = Settings()
