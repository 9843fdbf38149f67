"""Tests for batch stock reduction / restoration."""
import asyncio

import pytest

from storefront.common.errors import InvalidArgument, StockBatchFailed
from storefront.inventory.schemas import ProductCreate, ProductUpdate, StockItem
from storefront.inventory.service import (
    create_product,
    reduce_stock_for_items,
    restore_stock_for_items,
    update_product,
)


def item(product_id, quantity, size=None):
    return StockItem(productId=product_id, quantity=quantity, size=size)


async def test_partial_batch_commits_successes(make_product, read_stock):
    a = await make_product(stock=5, name="Batik Scarf")
    b = await make_product(size_stock={"M": 1}, name="Batik Shirt")

    outcome = await reduce_stock_for_items([item(a, 2), item(b, 3, "M")])

    assert [r["productId"] for r in outcome["results"]] == [a]
    assert outcome["results"][0]["remainingStock"] == 3
    assert len(outcome["errors"]) == 1
    assert outcome["errors"][0]["productId"] == b
    assert outcome["errors"][0]["error"] == "insufficient_stock"
    assert outcome["errors"][0]["detail"]["available"] == 1
    assert await read_stock(a) == (3, None)
    assert await read_stock(b) == (1, {"M": 1})


async def test_batch_where_every_item_fails_is_rolled_back(make_product, read_stock):
    a = await make_product(stock=1, name="Batik Scarf")
    b = await make_product(size_stock={"M": 1, "L": 2}, name="Batik Shirt")

    with pytest.raises(StockBatchFailed) as exc:
        await reduce_stock_for_items([item(a, 2), item(b, 1), item(999, 1)])

    errors = exc.value.errors
    assert [e["error"] for e in errors] == ["insufficient_stock", "invalid_argument", "not_found"]
    assert exc.value.detail["errors"] == errors
    assert await read_stock(a) == (1, None)
    assert await read_stock(b) == (3, {"M": 1, "L": 2})


async def test_items_for_same_product_apply_in_order(make_product, read_stock):
    pid = await make_product(size_stock={"M": 3, "L": 3})

    outcome = await reduce_stock_for_items([item(pid, 2, "M"), item(pid, 2, "M"), item(pid, 1, "L")])

    assert len(outcome["results"]) == 2
    assert outcome["errors"][0]["detail"] == {"available": 1, "requested": 2, "product_id": pid, "size": "M"}
    assert await read_stock(pid) == (3, {"M": 1, "L": 2})


async def test_restore_skips_missing_products(make_product, read_stock):
    a = await make_product(stock=0, name="Batik Scarf")
    b = await make_product(size_stock={"M": 0, "L": 1}, name="Batik Shirt")

    outcome = await restore_stock_for_items([item(a, 2), item(404, 5), item(b, 3, "m"), item(b, 1)])

    assert [r["productId"] for r in outcome["results"]] == [a, b]
    assert [s["productId"] for s in outcome["skipped"]] == [404]
    assert len(outcome["errors"]) == 1
    assert await read_stock(a) == (2, None)
    assert await read_stock(b) == (4, {"M": 3, "L": 1})


async def test_concurrent_reductions_never_oversell(make_product, read_stock):
    pid = await make_product(stock=5)

    async def buy_one():
        try:
            await reduce_stock_for_items([item(pid, 1)])
            return True
        except StockBatchFailed:
            return False

    outcomes = await asyncio.gather(*(buy_one() for _ in range(8)))

    assert outcomes.count(True) == 5
    assert await read_stock(pid) == (0, None)


async def test_concurrent_size_reductions_never_oversell(make_product, read_stock):
    pid = await make_product(size_stock={"M": 3, "L": 2})

    async def buy_one():
        try:
            await reduce_stock_for_items([item(pid, 1, "M")])
            return True
        except StockBatchFailed:
            return False

    outcomes = await asyncio.gather(*(buy_one() for _ in range(6)))

    assert outcomes.count(True) == 3
    assert await read_stock(pid) == (2, {"M": 0, "L": 2})


async def test_create_product_derives_stock_from_sizes(db):
    prod = await create_product(
        ProductCreate(name="Batik Kawung Dress", price=350000.0, stock=99, size_stock={"S": 2, "M": 6})
    )
    assert prod["stock"] == 8
    assert prod["size_stock"] == {"S": 2, "M": 6}


async def test_update_product_stock_rules(make_product, read_stock):
    sized = await make_product(size_stock={"M": 2})
    plain = await make_product(stock=4, name="Batik Scarf")

    with pytest.raises(InvalidArgument):
        await update_product(sized, ProductUpdate(stock=10))

    prod = await update_product(sized, ProductUpdate(size_stock={"M": 1, "L": 5}))
    assert prod["stock"] == 6
    prod = await update_product(plain, ProductUpdate(stock=9, name="Batik Silk Scarf"))
    assert prod["stock"] == 9
    assert prod["name"] == "Batik Silk Scarf"
    prod = await update_product(sized, ProductUpdate(size_stock={}, stock=3))
    assert prod["size_stock"] == {}
    assert await read_stock(sized) == (3, None)

    with pytest.raises(InvalidArgument):
        await update_product(plain, ProductUpdate())
