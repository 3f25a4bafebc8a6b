from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # camelCase on the wire, snake_case accepted on input
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---- inputs ----

class BuyerIn(CamelModel):
    id: int | None = None
    email: EmailStr | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


class LineItemIn(CamelModel):
    product_id: int
    name: str = Field(default="", max_length=255)
    image: str | None = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class ShippingAddressIn(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class OrderCreateIn(CamelModel):
    buyer: BuyerIn | None = None
    # None means "check out my cart"
    items: list[LineItemIn] | None = None
    shipping_address: ShippingAddressIn | None = None
    payment_method: str | None = Field(default=None, max_length=100)
    notify_via: Literal["email", "whatsapp", "both", "none"] = "email"
    notes: str | None = None


class StatusUpdateIn(CamelModel):
    status: str = Field(min_length=1)
    notify_customer: bool = True
    tracking_number: str | None = None
    force: bool = False


class PaymentStatusIn(CamelModel):
    payment_status: str = Field(min_length=1)


class NotesIn(CamelModel):
    notes: str | None = None


class CartItemIn(CamelModel):
    product_id: int
    name: str = Field(min_length=1, max_length=255)
    image: str | None = None
    quantity: int = Field(default=1, gt=0)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class CartItemUpdateIn(CamelModel):
    quantity: int


# ---- outputs ----

class OrderCreateOut(CamelModel):
    success: bool = True
    order_id: int
    order_number: str
    subtotal: float
    tax: float
    shipping: float
    total: float


class OrderItemOut(CamelModel):
    product_id: int
    product_name: str | None = None
    product_image: str | None = None
    quantity: int
    price_per_item: float
    item_total: float


class ShippingAddressOut(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class OrderOut(CamelModel):
    id: int
    order_number: str
    user_id: int | None = None
    status: str
    payment_method: str | None = None
    payment_status: str
    subtotal: float
    tax: float
    shipping: float
    total: float
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items: list[OrderItemOut] = []
    shipping_address: ShippingAddressOut | None = None
    item_count: int = 0


class OrderSummaryOut(CamelModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    total: float
    created_at: datetime | None = None
    item_count: int = 0
    user_email: str | None = None


class PaginationOut(CamelModel):
    limit: int
    offset: int
    total: int | None = None
    pages: int | None = None
    returned: int | None = None


class OrderPageOut(CamelModel):
    orders: list[OrderSummaryOut]
    pagination: PaginationOut


class GuestOrdersOut(CamelModel):
    success: bool = True
    orders: list[OrderSummaryOut]
    total: int


class OrderStatsOut(CamelModel):
    total_orders: int
    total_revenue: float
    avg_order_value: float
    delivered_orders: int
    pending_orders: int
    cancelled_orders: int


class TrackingEventOut(CamelModel):
    status: str
    timestamp: datetime | None = None
    description: str
    location: str | None = None


class TrackingOut(CamelModel):
    order_number: str
    status: str
    location: str
    estimated_delivery: datetime | None = None
    last_updated: datetime | None = None
    events: list[TrackingEventOut]


class CartItemOut(CamelModel):
    product_id: int
    name: str
    image: str | None = None
    quantity: int
    price_at_add: float
    item_total: float


class CartOut(CamelModel):
    items: list[CartItemOut]
    item_count: int
    subtotal: float
    tax: float
    shipping: float
    total: float
    empty: bool
