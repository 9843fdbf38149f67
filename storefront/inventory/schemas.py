from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class StockItem(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    product_id: StrictInt = Field(alias="productId", gt=0)
    size: Optional[str] = Field(default=None, min_length=1, max_length=32)
    quantity: StrictInt = Field(gt=0)


class StockBatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[StockItem] = Field(min_length=1)


def _check_sizes(value: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
    if value is None:
        return value
    for label, qty in value.items():
        if not label.strip():
            raise ValueError("size labels must not be blank")
        if qty < 0:
            raise ValueError(f"stock for size {label} must not be negative")
    return value


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    price: float = Field(ge=0)
    category: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    stock: StrictInt = Field(default=0, ge=0)
    size_stock: Optional[Dict[str, StrictInt]] = None

    check_sizes = field_validator("size_stock")(_check_sizes)


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[StrictInt] = Field(default=None, ge=0)
    size_stock: Optional[Dict[str, StrictInt]] = None

    check_sizes = field_validator("size_stock")(_check_sizes)
