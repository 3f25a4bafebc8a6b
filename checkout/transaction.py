import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .cart import get_cart
from .errors import OrderValidationError, PersistenceError
from .identity import resolve_or_create_guest_identity
from .models import Order, OrderItem, OrderStatus, PaymentStatus, ShippingAddress
from .numbering import OrderNumberGenerator
from .pricing import PricingPolicy, money
from .schemas import LineItemIn, OrderCreateIn, ShippingAddressIn
from .tracking import ESTIMATED_DELIVERY_DAYS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderConfirmation:
    order_id: int
    order_number: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


class OrderTransaction:
    """
    Persists one order (header, line items, shipping address) as a single
    all-or-nothing unit.

    The store handle is the Session passed to create(); it must not have a
    transaction open yet. Any earlier use of the session that autobegins one
    (a query, a refresh after commit, lazy loading) makes db.begin() raise
    InvalidRequestError, reported as PersistenceError. Use a fresh session,
    or commit or close it first.
    The routes satisfy this with one new session per request.

    Totals are always recomputed from the line items.
    Not idempotent: every successful call writes a new order number.
    """

    def __init__(
        self,
        numbers: OrderNumberGenerator,
        pricing: PricingPolicy,
        default_payment_method: str = "cod",
    ):
        self.numbers = numbers
        self.pricing = pricing
        self.default_payment_method = default_payment_method

    @staticmethod
    def validate_address(shipping: Optional[ShippingAddressIn]) -> None:
        if shipping is None or _blank(shipping.first_name) or _blank(shipping.street):
            raise OrderValidationError("Complete shipping address is required")

    @staticmethod
    def validate_items(items: Optional[Sequence[LineItemIn]]) -> None:
        if not items:
            raise OrderValidationError("Order must contain at least one item")
        for it in items:
            if it.quantity is None or it.quantity <= 0:
                raise OrderValidationError(f"Invalid quantity for product {it.product_id}")
            if it.unit_price is None or it.unit_price < 0:
                raise OrderValidationError(f"Invalid price for product {it.product_id}")

    def create(
        self,
        db: Session,
        buyer_id: Optional[int],
        items: Sequence[LineItemIn],
        shipping: ShippingAddressIn,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderConfirmation:
        self.validate_items(items)
        self.validate_address(shipping)

        try:
            with db.begin():
                order_number = self.numbers.next_number(buyer_id)
                totals = self.pricing.compute_totals((it.quantity, it.unit_price) for it in items)

                order = Order(
                    user_id=buyer_id,
                    order_number=order_number,
                    status=OrderStatus.PENDING.value,
                    subtotal=totals.subtotal,
                    tax=totals.tax,
                    shipping=totals.shipping,
                    total=totals.total,
                    payment_method=payment_method or self.default_payment_method,
                    payment_status=PaymentStatus.PENDING.value,
                    notes=notes,
                )
                db.add(order)
                db.flush()  # get order.id

                _insert_items(db, order.id, items, self.pricing)
                _insert_shipping_address(db, order.id, shipping)

                confirmation = OrderConfirmation(
                    order_id=order.id,
                    order_number=order_number,
                    subtotal=totals.subtotal,
                    tax=totals.tax,
                    shipping=totals.shipping,
                    total=totals.total,
                )

        except SQLAlchemyError as e:
            logger.exception("Order creation rolled back buyer_id=%s error=%r", buyer_id, e)
            raise PersistenceError() from e

        logger.info(
            "Order %s created buyer_id=%s items=%s total=%s",
            confirmation.order_number, buyer_id, len(items), confirmation.total,
        )
        return confirmation


def _insert_items(db: Session, order_id: int, items: Sequence[LineItemIn], pricing: PricingPolicy) -> None:
    for it in items:
        db.add(
            OrderItem(
                order_id=order_id,
                product_id=it.product_id,
                product_name=it.name,
                product_image=it.image,
                quantity=it.quantity,
                price_per_item=money(it.unit_price),
                item_total=pricing.line_total(it.quantity, it.unit_price),
            )
        )
    db.flush()


def _insert_shipping_address(db: Session, order_id: int, shipping: ShippingAddressIn) -> None:
    db.add(
        ShippingAddress(
            order_id=order_id,
            first_name=shipping.first_name,
            last_name=shipping.last_name,
            email=shipping.email,
            phone=shipping.phone,
            street=shipping.street,
            city=shipping.city,
            state=shipping.state,
            postal_code=shipping.postal_code,
            country=shipping.country,
        )
    )
    db.flush()


@dataclass
class PlacedOrder:
    confirmation: OrderConfirmation
    buyer_id: int
    from_cart: bool
    notify_via: str
    summary: Dict[str, Any] = field(default_factory=dict)
    # cart rows this order consumed; only these are removed after commit
    cart_product_ids: List[int] = field(default_factory=list)


def _cart_as_items(db: Session, user_id: int, pricing: PricingPolicy) -> List[LineItemIn]:
    with db.begin():
        cart = get_cart(db, user_id, pricing)
    if cart.empty:
        raise OrderValidationError("Cart is empty. Add items before creating order.")
    return [
        LineItemIn(
            product_id=ln.product_id,
            name=ln.name,
            image=ln.image,
            quantity=ln.quantity,
            unit_price=ln.price_at_add,
        )
        for ln in cart.items
    ]


def place_order(
    db: Session,
    tx: OrderTransaction,
    payload: OrderCreateIn,
    claims: Optional[dict] = None,
) -> PlacedOrder:
    """
    Checkout entry point used by the HTTP layer.

    Everything that can be rejected without I/O is rejected first, so an
    invalid request never creates a guest account. Post-commit work (cart
    clearing, notifications) is described by the returned PlacedOrder and
    scheduled by the caller.
    """
    shipping = payload.shipping_address
    tx.validate_address(shipping)

    from_cart = payload.items is None
    if not from_cart:
        tx.validate_items(payload.items)

    buyer = payload.buyer
    if claims is not None:
        buyer_id = int(claims["sub"])
        if buyer is not None and buyer.id is not None and buyer.id != buyer_id:
            raise OrderValidationError("Buyer id does not match the signed-in user")
    else:
        if buyer is not None and buyer.id is not None:
            raise OrderValidationError("Sign in to order as an existing buyer")
        if from_cart:
            raise OrderValidationError("Order must contain at least one item")

        email = (buyer.email if buyer else None) or shipping.email
        if _blank(email):
            raise OrderValidationError("Email is required for guest checkout")

        buyer_id = resolve_or_create_guest_identity(
            db,
            email,
            first_name=(buyer.first_name if buyer else None) or shipping.first_name,
            last_name=(buyer.last_name if buyer else None) or shipping.last_name,
            phone=(buyer.phone if buyer else None) or shipping.phone,
        )

    items = _cart_as_items(db, buyer_id, tx.pricing) if from_cart else list(payload.items)

    confirmation = tx.create(
        db,
        buyer_id,
        items,
        shipping,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )

    summary = {
        "order_id": confirmation.order_id,
        "order_number": confirmation.order_number,
        "items": [
            {
                "name": it.name,
                "quantity": it.quantity,
                "price": money(it.unit_price),
                "total": tx.pricing.line_total(it.quantity, it.unit_price),
            }
            for it in items
        ],
        "subtotal": confirmation.subtotal,
        "tax": confirmation.tax,
        "shipping": confirmation.shipping,
        "total": confirmation.total,
        "payment_method": payload.payment_method or tx.default_payment_method,
        "estimated_delivery": datetime.now(timezone.utc) + timedelta(days=ESTIMATED_DELIVERY_DAYS),
        "shipping_address": shipping.model_dump(),
    }

    return PlacedOrder(
        confirmation=confirmation,
        buyer_id=buyer_id,
        from_cart=from_cart,
        notify_via=payload.notify_via,
        summary=summary,
        cart_product_ids=[it.product_id for it in items] if from_cart else [],
    )
