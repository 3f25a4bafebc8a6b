import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models import CartItem
from .pricing import PricingPolicy, Totals, money

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: int
    name: str
    image: Optional[str]
    quantity: int
    price_at_add: Decimal
    item_total: Decimal


@dataclass
class Cart:
    items: List[CartLine]
    totals: Totals

    @property
    def empty(self) -> bool:
        return not self.items


def get_cart(db: Session, user_id: int, pricing: PricingPolicy) -> Cart:
    rows = db.execute(
        select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.added_at.desc(), CartItem.id.desc())
    ).scalars().all()

    lines = [
        CartLine(
            product_id=r.product_id,
            name=r.product_name,
            image=r.product_image,
            quantity=r.quantity,
            price_at_add=money(r.price_at_add),
            item_total=pricing.line_total(r.quantity, r.price_at_add),
        )
        for r in rows
    ]
    totals = pricing.compute_totals((ln.quantity, ln.price_at_add) for ln in lines)
    return Cart(items=lines, totals=totals)


def add_to_cart(
    db: Session,
    user_id: int,
    product_id: int,
    name: str,
    price,
    quantity: int = 1,
    image: Optional[str] = None,
) -> CartItem:
    """Adding a product already in the cart increments its quantity and refreshes the price."""
    item = db.execute(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    ).scalar_one_or_none()

    if item is None:
        item = CartItem(
            user_id=user_id,
            product_id=product_id,
            product_name=name,
            product_image=image,
            quantity=quantity,
            price_at_add=money(price),
        )
        db.add(item)
    else:
        item.quantity += quantity
        item.price_at_add = money(price)
        item.product_name = name
        if image is not None:
            item.product_image = image

    db.commit()
    db.refresh(item)
    return item


def update_cart_item(db: Session, user_id: int, product_id: int, quantity: int) -> Optional[CartItem]:
    """Returns None when the item was removed (quantity <= 0) or was never there."""
    item = db.execute(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    ).scalar_one_or_none()
    if item is None:
        return None

    if quantity <= 0:
        db.delete(item)
        db.commit()
        return None

    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_from_cart(db: Session, user_id: int, product_id: int) -> bool:
    result = db.execute(
        delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    db.commit()
    return result.rowcount > 0


def remove_cart_products(db: Session, user_id: int, product_ids: Sequence[int]) -> int:
    """Drop the given products from the cart; anything added since stays."""
    result = db.execute(
        delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id.in_(list(product_ids)))
    )
    db.commit()
    logger.info("Removed ordered items from cart user_id=%s items=%s", user_id, result.rowcount)
    return result.rowcount


def clear_cart(db: Session, user_id: int) -> int:
    result = db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    db.commit()
    logger.info("Cleared cart user_id=%s items=%s", user_id, result.rowcount)
    return result.rowcount


def cart_count(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(CartItem.id)).where(CartItem.user_id == user_id)
    ).scalar_one()
