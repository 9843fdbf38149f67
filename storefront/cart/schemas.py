from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class AddCartItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: StrictInt = Field(gt=0)
    size: Optional[str] = Field(default=None, min_length=1, max_length=32)
    quantity: StrictInt = Field(default=1, gt=0)


class UpdateCartItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    size: Optional[str] = Field(default=None, min_length=1, max_length=32)
    quantity: Optional[StrictInt] = Field(default=None, gt=0)
