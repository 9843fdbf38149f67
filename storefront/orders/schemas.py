from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

PENDING = "pending"
PAID = "paid"
PROCESSING = "processing"
SHIPPING = "shipping"
COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"
DELETED = "deleted"

# Statuses a caller may set explicitly; DELETED is only reachable through soft delete
ORDER_STATUSES = (PENDING, PAID, PROCESSING, SHIPPING, COMPLETED, CANCELLED, FAILED)
# Orders in these states may be removed outright
DELETABLE_STATUSES = (PENDING, CANCELLED, FAILED)
# Entering one of these stamps paid_at once
PAYMENT_STATUSES = (PAID, COMPLETED)

OrderStatus = Literal["pending", "paid", "processing", "shipping", "completed", "cancelled", "failed"]


class LineItem(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    product_id: StrictInt = Field(alias="productId", gt=0)
    size: Optional[str] = Field(default=None, min_length=1, max_length=32)
    quantity: StrictInt = Field(gt=0)
    name: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: StrictInt = Field(gt=0)
    name: str = Field(min_length=1, max_length=255)
    total_price: float = Field(gt=0)
    total_items: StrictInt = Field(default=0, ge=0)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[OrderStatus] = None
    items: List[LineItem] = Field(default_factory=list)


class UpdateStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Checked against ORDER_STATUSES by the service so the error names the allowed values
    status: str = Field(min_length=1)
    payment_method: Optional[str] = Field(default=None, max_length=64)
    shipping_method: Optional[str] = Field(default=None, max_length=64)


class TrackingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    tracking_number: str = Field(alias="trackingNumber", min_length=1, max_length=128)
    status: Optional[str] = None
