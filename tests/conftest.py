import time

import jwt
import pytest
import sqlalchemy as sa

from storefront.app import create_app
from storefront.common import database
from storefront.common.config import settings
from storefront.inventory.model import Product
from storefront.inventory.stock import total_of


def make_token(user_id=1, role="user", email="buyer@example.com"):
    payload = {"id": user_id, "email": email, "role": role, "exp": int(time.time()) + 3600}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
async def db(tmp_path):
    database.init_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await database.init_db()
    yield database.get_sessionmaker()
    await database.dispose_engine()


@pytest.fixture
def make_product(db):
    async def _make(stock=0, size_stock=None, name="Batik Parang Shirt", price=250000.0):
        if size_stock:
            stock = total_of(size_stock)
        async with db() as session:
            async with session.begin():
                prod = Product(name=name, price=price, stock=stock, size_stock=size_stock)
                session.add(prod)
                await session.flush()
            return prod.id

    return _make


@pytest.fixture
def read_stock(db):
    async def _read(product_id):
        async with db() as session:
            row = (
                await session.execute(
                    sa.select(Product.stock, Product.size_stock).where(Product.id == product_id)
                )
            ).first()
            if row is None:
                return None
            return row.stock, row.size_stock

    return _read


@pytest.fixture
def client(db):
    return create_app().test_client()


@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {make_token(user_id=7)}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token(user_id=1, role='admin', email='admin@example.com')}"}
