import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from .errors import InvalidStatusError, InvalidTransitionError, NotOrderOwnerError, OrderNotFoundError
from .models import Order, OrderItem, OrderStatus, PaymentStatus, ShippingAddress, User

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Linear delivery progression; cancelled sits outside it.
PROGRESSION = [
    OrderStatus.PENDING.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
]
TERMINAL = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
CANCELLABLE = {OrderStatus.PENDING.value, OrderStatus.PROCESSING.value}

VALID_STATUSES = [s.value for s in OrderStatus]
VALID_PAYMENT_STATUSES = [s.value for s in PaymentStatus]


def clamp_page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit = min(max(limit or 50, 1), MAX_PAGE_SIZE)
    offset = max(offset or 0, 0)
    return limit, offset


def _detail_query():
    return select(Order).options(selectinload(Order.items), selectinload(Order.shipping_address))


def find_order(db: Session, ref) -> Order:
    """ref is an order id or an order number."""
    ref = str(ref).strip()
    if not ref.isdigit():
        return get_order_by_number(db, ref)
    order = db.execute(
        _detail_query().where(or_(Order.id == int(ref), Order.order_number == ref))
    ).scalars().first()
    if not order:
        raise OrderNotFoundError(ref)
    return order


def get_order(db: Session, order_id: int, user_id: int) -> Order:
    order = db.execute(
        _detail_query().where(Order.id == order_id, Order.user_id == user_id)
    ).scalar_one_or_none()
    if not order:
        raise OrderNotFoundError(order_id)
    return order


def get_order_by_number(db: Session, order_number: str) -> Order:
    order = db.execute(_detail_query().where(Order.order_number == order_number)).scalar_one_or_none()
    if not order:
        raise OrderNotFoundError(order_number)
    return order


def order_detail(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "shipping": order.shipping,
        "total": order.total,
        "notes": order.notes,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "items": order.items,
        "shipping_address": order.shipping_address,
        "item_count": len(order.items),
    }


def _item_counts():
    return (
        select(OrderItem.order_id, func.count(OrderItem.id).label("item_count"))
        .group_by(OrderItem.order_id)
        .subquery()
    )


def _summary(order: Order, item_count, user_email: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "total": order.total,
        "created_at": order.created_at,
        "item_count": item_count or 0,
        "user_email": user_email,
    }


def list_user_orders(db: Session, user_id: int, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    limit, offset = clamp_page(limit, offset)
    total = db.execute(select(func.count(Order.id)).where(Order.user_id == user_id)).scalar_one()

    counts = _item_counts()
    rows = db.execute(
        select(Order, counts.c.item_count)
        .outerjoin(counts, counts.c.order_id == Order.id)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()

    return {
        "orders": [_summary(o, n) for o, n in rows],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def list_all_orders(db: Session, limit: int = 50, offset: int = 0, status: Optional[str] = None) -> Dict[str, Any]:
    limit, offset = clamp_page(limit, offset)
    counts = _item_counts()
    stmt = (
        select(Order, counts.c.item_count, User.email)
        .outerjoin(counts, counts.c.order_id == Order.id)
        .outerjoin(User, User.id == Order.user_id)
    )
    if status:
        stmt = stmt.where(Order.status == status)
    rows = db.execute(
        stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    ).all()

    return {
        "orders": [_summary(o, n, email) for o, n, email in rows],
        "pagination": {"limit": limit, "offset": offset, "returned": len(rows)},
    }


def check_transition(current: str, target: str, force: bool = False) -> None:
    if target not in VALID_STATUSES:
        raise InvalidStatusError(target, VALID_STATUSES)
    if force or target == current:
        return
    if current in TERMINAL:
        raise InvalidTransitionError(current, target)
    if target == OrderStatus.CANCELLED.value:
        return
    if PROGRESSION.index(target) < PROGRESSION.index(current):
        raise InvalidTransitionError(current, target)


def update_order_status(db: Session, ref, status: str, force: bool = False) -> Tuple[Order, bool]:
    """
    Move an order along pending → processing → shipped → out_for_delivery →
    delivered, or to cancelled from any non-terminal status. Moves are
    forward only; delivered and cancelled are final unless force is set.
    Returns (order, changed); setting the current status again writes nothing.
    """
    status = (status or "").strip().lower()
    if status not in VALID_STATUSES:
        raise InvalidStatusError(status, VALID_STATUSES)

    order = find_order(db, ref)
    check_transition(order.status, status, force)
    if order.status == status:
        return order, False

    previous = order.status
    order.status = status
    db.commit()
    db.refresh(order)
    logger.info("Order %s status %s -> %s%s", order.order_number, previous, status, " (forced)" if force else "")
    return order, True


def cancel_order(db: Session, ref, user_id: int, is_admin: bool = False) -> Order:
    order = find_order(db, ref)
    if not is_admin and order.user_id != user_id:
        raise NotOrderOwnerError()
    if order.status not in CANCELLABLE:
        raise InvalidTransitionError(order.status, OrderStatus.CANCELLED.value)

    order.status = OrderStatus.CANCELLED.value
    db.commit()
    db.refresh(order)
    logger.info("Order %s cancelled by user_id=%s admin=%s", order.order_number, user_id, is_admin)
    return order


def update_payment_status(db: Session, ref, payment_status: str) -> Order:
    payment_status = (payment_status or "").strip().lower()
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise InvalidStatusError(payment_status, VALID_PAYMENT_STATUSES, kind="payment status")

    order = find_order(db, ref)
    order.payment_status = payment_status
    db.commit()
    db.refresh(order)
    return order


def set_order_notes(db: Session, ref, notes: Optional[str]) -> Order:
    order = find_order(db, ref)
    order.notes = notes
    db.commit()
    db.refresh(order)
    return order


def delete_order(db: Session, ref) -> int:
    """Hard delete; line items and the shipping address go with it."""
    order = find_order(db, ref)
    order_id = order.id
    db.delete(order)
    db.commit()
    logger.info("Order id=%s deleted", order_id)
    return order_id


def order_stats(db: Session) -> Dict[str, Any]:
    def _count_status(status: OrderStatus):
        return func.coalesce(func.sum(case((Order.status == status.value, 1), else_=0)), 0)

    row = db.execute(
        select(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total), 0),
            func.coalesce(func.avg(Order.total), 0),
            _count_status(OrderStatus.DELIVERED),
            _count_status(OrderStatus.PENDING),
            _count_status(OrderStatus.CANCELLED),
        )
    ).one()

    return {
        "total_orders": int(row[0]),
        "total_revenue": float(row[1]),
        "avg_order_value": round(float(row[2]), 2),
        "delivered_orders": int(row[3]),
        "pending_orders": int(row[4]),
        "cancelled_orders": int(row[5]),
    }


def past_addresses(db: Session, user_id: int, limit: int = 5) -> List[ShippingAddress]:
    """Most recent distinct (street, city, postal code) addresses the buyer shipped to."""
    rows = db.execute(
        select(ShippingAddress)
        .join(Order, Order.id == ShippingAddress.order_id)
        .where(Order.user_id == user_id)
        .order_by(ShippingAddress.created_at.desc(), ShippingAddress.id.desc())
    ).scalars()

    seen = set()
    out: List[ShippingAddress] = []
    for addr in rows:
        key = (addr.street, addr.city, addr.postal_code)
        if key in seen:
            continue
        seen.add(key)
        out.append(addr)
        if len(out) >= limit:
            break
    return out


def orders_for_email(db: Session, email: str) -> List[Dict[str, Any]]:
    counts = _item_counts()
    rows = db.execute(
        select(Order, counts.c.item_count)
        .join(ShippingAddress, ShippingAddress.order_id == Order.id)
        .outerjoin(counts, counts.c.order_id == Order.id)
        .where(func.lower(ShippingAddress.email) == (email or "").strip().lower())
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).all()
    return [_summary(o, n) for o, n in rows]


def status_summary(order: Order) -> Dict[str, Any]:
    """Payload for status-change notifications."""
    address = order.shipping_address
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "total": order.total,
        "status": order.status,
        "shipping_address": {
            "email": address.email,
            "first_name": address.first_name,
            "phone": address.phone,
        } if address else {},
    }
