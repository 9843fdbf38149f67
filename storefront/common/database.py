import logging
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .db import Base

_logger = logging.getLogger(__name__)

# Process-wide engine (connection pool) and session factory, created once by init_engine()
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": settings.DB_BUSY_TIMEOUT}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


def init_engine(url: Optional[str] = None) -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is not None:
        return _engine
    url = url or settings.DB_URL
    _engine = create_async_engine(url, echo=settings.DB_ECHO, **_engine_kwargs(url))
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False, class_=AsyncSession)
    _logger.info("Database engine created | dialect=%s", _engine.dialect.name)
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine is not initialized; call init_engine() first")
    return _engine


def get_sessionmaker() -> async_sessionmaker:
    if _sessionmaker is None:
        raise RuntimeError("Database engine is not initialized; call init_engine() first")
    return _sessionmaker


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


async def init_db() -> None:
    # Import models so they register on Base.metadata
    from ..cart.model import CartItem  # noqa: F401
    from ..inventory.model import Product  # noqa: F401
    from ..orders.model import Order  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        # Add stock columns to product tables created before they existed (simple migration)
        def _migrate(sync_conn):
            insp = sa.inspect(sync_conn)
            cols = [c["name"] for c in insp.get_columns("products")]
            if "size_stock" not in cols:
                sync_conn.execute(sa.text("ALTER TABLE products ADD COLUMN size_stock JSON"))
            if "version" not in cols:
                sync_conn.execute(sa.text("ALTER TABLE products ADD COLUMN version INTEGER NOT NULL DEFAULT 0"))

        await conn.run_sync(_migrate)
