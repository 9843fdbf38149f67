import asyncio
import logging

import sqlalchemy as sa

from .common.database import get_sessionmaker, init_db, init_engine
from .inventory.model import Product
from .inventory.stock import total_of

_logger = logging.getLogger(__name__)


SAMPLE_PRODUCTS = [
    {"name": "Batik Parang Shirt", "price": 275000.0, "category": "shirt", "color": "brown",
     "size_stock": {"S": 4, "M": 5, "L": 3, "XL": 2}},
    {"name": "Batik Kawung Dress", "price": 350000.0, "category": "dress", "color": "indigo",
     "size_stock": {"S": 2, "M": 6, "L": 4}},
    {"name": "Batik Mega Mendung Scarf", "price": 120000.0, "category": "accessory", "color": "blue",
     "stock": 40},
    {"name": "Batik Truntum Sarong", "price": 210000.0, "category": "sarong", "color": "black",
     "stock": 15},
    {"name": "Batik Sekar Jagad Blouse", "price": 295000.0, "category": "blouse", "color": "red",
     "size_stock": {"M": 3, "L": 3}},
]


async def seed_products() -> int:
    added = 0
    async with get_sessionmaker()() as session:
        async with session.begin():
            for p in SAMPLE_PRODUCTS:
                # avoid duplicates by name
                res = await session.execute(sa.select(Product.id).where(Product.name == p["name"]))
                if res.first():
                    continue
                data = dict(p)
                sizes = data.pop("size_stock", None)
                if sizes:
                    data["stock"] = total_of(sizes)
                session.add(Product(size_stock=sizes, **data))
                added += 1
    _logger.info("Seed complete. Added %s products.", added)
    return added


async def amain():
    logging.basicConfig(level=logging.INFO)
    init_engine()
    await init_db()
    await seed_products()


if __name__ == "__main__":
    asyncio.run(amain())
