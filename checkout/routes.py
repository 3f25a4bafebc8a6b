import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.security import optional_user, require_admin, require_user, user_id_from

from . import cart as carts
from . import orders
from .db import get_db
from .errors import (
    InvalidStatusError,
    InvalidTransitionError,
    NotOrderOwnerError,
    OrderNotFoundError,
    OrderValidationError,
    PersistenceError,
)
from .notifications import after_order_committed, notify_status_change
from .schemas import (
    CartItemIn,
    CartItemUpdateIn,
    CartOut,
    GuestOrdersOut,
    NotesIn,
    OrderCreateIn,
    OrderCreateOut,
    OrderOut,
    OrderPageOut,
    OrderStatsOut,
    PaymentStatusIn,
    ShippingAddressOut,
    StatusUpdateIn,
    TrackingOut,
)
from .tracking import build_tracking
from .transaction import place_order

logger = logging.getLogger(__name__)

order_router = APIRouter(prefix="/orders", tags=["orders"])
guest_router = APIRouter(prefix="/guest-orders", tags=["guest-orders"])
cart_router = APIRouter(prefix="/cart", tags=["cart"])


def _checkout(request: Request, payload: OrderCreateIn, claims: Optional[dict], db: Session,
              background_tasks: BackgroundTasks) -> OrderCreateOut:
    if claims is not None:
        user_id_from(claims)  # 401 on a malformed subject, before any write
    try:
        placed = place_order(db, request.app.state.checkout, payload, claims)
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    # After commit: never able to fail the order
    background_tasks.add_task(
        after_order_committed,
        request.app.state.sessionmaker,
        request.app.state.notifier,
        buyer_id=placed.buyer_id,
        summary=placed.summary,
        notify_via=placed.notify_via,
        cart_product_ids=placed.cart_product_ids,
    )

    c = placed.confirmation
    return OrderCreateOut(
        order_id=c.order_id,
        order_number=c.order_number,
        subtotal=float(c.subtotal),
        tax=float(c.tax),
        shipping=float(c.shipping),
        total=float(c.total),
    )


def _status_error(e: Exception) -> HTTPException:
    if isinstance(e, OrderNotFoundError):
        return HTTPException(status_code=404, detail="Order not found")
    if isinstance(e, NotOrderOwnerError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ---- orders ----

@order_router.post("", response_model=OrderCreateOut, status_code=201)
def create_order(
    payload: OrderCreateIn,
    request: Request,
    background_tasks: BackgroundTasks,
    claims: Optional[dict] = Depends(optional_user),
    db: Session = Depends(get_db),
):
    return _checkout(request, payload, claims, db, background_tasks)


@order_router.get("/addresses", response_model=List[ShippingAddressOut])
def saved_addresses(claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    return orders.past_addresses(db, user_id_from(claims))


@order_router.get("/history", response_model=OrderPageOut)
def order_history(
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    claims: dict = Depends(require_user),
    db: Session = Depends(get_db),
):
    return orders.list_user_orders(db, user_id_from(claims), limit, offset)


@order_router.get("/admin/all", response_model=OrderPageOut)
def admin_all_orders(
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    status: Optional[str] = None,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return orders.list_all_orders(db, limit, offset, status)


@order_router.get("/admin/stats", response_model=OrderStatsOut)
def admin_stats(claims: dict = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        return orders.order_stats(db)
    except SQLAlchemyError:
        logger.exception("Order stats query failed")
        raise HTTPException(status_code=500, detail="Error retrieving statistics")


@order_router.get("/{ref}/tracking", response_model=TrackingOut)
def order_tracking(ref: str, db: Session = Depends(get_db)):
    try:
        order = orders.find_order(db, ref)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return build_tracking(order)


@order_router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    try:
        order = orders.get_order(db, order_id, user_id_from(claims))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return orders.order_detail(order)


@order_router.put("/{ref}/status", response_model=OrderOut)
def update_status(
    ref: str,
    payload: StatusUpdateIn,
    request: Request,
    background_tasks: BackgroundTasks,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        order, changed = orders.update_order_status(db, ref, payload.status, force=payload.force)
    except (OrderNotFoundError, InvalidStatusError, InvalidTransitionError) as e:
        raise _status_error(e)

    if changed and payload.notify_customer:
        summary = orders.status_summary(order)
        summary["tracking_number"] = payload.tracking_number
        background_tasks.add_task(
            notify_status_change,
            request.app.state.sessionmaker,
            request.app.state.notifier,
            buyer_id=order.user_id,
            summary=summary,
            status=order.status,
        )

    return orders.order_detail(order)


@order_router.put("/{ref}/payment-status", response_model=OrderOut)
def update_payment_status(
    ref: str,
    payload: PaymentStatusIn,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        order = orders.update_payment_status(db, ref, payload.payment_status)
    except (OrderNotFoundError, InvalidStatusError) as e:
        raise _status_error(e)
    return orders.order_detail(order)


@order_router.put("/{ref}/notes", response_model=OrderOut)
def update_notes(
    ref: str,
    payload: NotesIn,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        order = orders.set_order_notes(db, ref, payload.notes)
    except OrderNotFoundError as e:
        raise _status_error(e)
    return orders.order_detail(order)


@order_router.put("/{ref}/cancel", response_model=OrderOut)
def cancel(ref: str, claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    try:
        order = orders.cancel_order(db, ref, user_id_from(claims), bool(claims.get("is_admin")))
    except (OrderNotFoundError, NotOrderOwnerError) as e:
        raise _status_error(e)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=f"Order cannot be cancelled as it is already {e.current}")
    return orders.order_detail(order)


@order_router.delete("/{ref}")
def delete(ref: str, claims: dict = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        deleted_id = orders.delete_order(db, ref)
    except OrderNotFoundError as e:
        raise _status_error(e)
    return {"ok": True, "deletedOrderId": deleted_id}


# ---- guest checkout ----

@guest_router.post("", response_model=OrderCreateOut, status_code=201)
def create_guest_order(
    payload: OrderCreateIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    return _checkout(request, payload, None, db, background_tasks)


@guest_router.get("/{email}", response_model=GuestOrdersOut)
def guest_orders(email: str, db: Session = Depends(get_db)):
    rows = orders.orders_for_email(db, email)
    return GuestOrdersOut(orders=rows, total=len(rows))


# ---- cart ----

def _cart_out(db: Session, request: Request, user_id: int) -> CartOut:
    cart = carts.get_cart(db, user_id, request.app.state.checkout.pricing)
    t = cart.totals
    return CartOut(
        items=[
            {
                "product_id": ln.product_id,
                "name": ln.name,
                "image": ln.image,
                "quantity": ln.quantity,
                "price_at_add": ln.price_at_add,
                "item_total": ln.item_total,
            }
            for ln in cart.items
        ],
        item_count=len(cart.items),
        subtotal=float(t.subtotal),
        tax=float(t.tax),
        shipping=float(t.shipping),
        total=float(t.total),
        empty=cart.empty,
    )


@cart_router.get("", response_model=CartOut)
def get_cart(request: Request, claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    return _cart_out(db, request, user_id_from(claims))


@cart_router.get("/count")
def get_cart_count(claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    return {"count": carts.cart_count(db, user_id_from(claims))}


@cart_router.post("/items", response_model=CartOut, status_code=201)
def add_item(
    payload: CartItemIn,
    request: Request,
    claims: dict = Depends(require_user),
    db: Session = Depends(get_db),
):
    user_id = user_id_from(claims)
    try:
        carts.add_to_cart(
            db, user_id, payload.product_id, payload.name, payload.price,
            quantity=payload.quantity, image=payload.image,
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Add to cart failed user_id=%s", user_id)
        raise HTTPException(status_code=500, detail="Failed to update cart")
    return _cart_out(db, request, user_id)


@cart_router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: int,
    payload: CartItemUpdateIn,
    request: Request,
    claims: dict = Depends(require_user),
    db: Session = Depends(get_db),
):
    user_id = user_id_from(claims)
    item = carts.update_cart_item(db, user_id, product_id, payload.quantity)
    if item is None and payload.quantity > 0:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return _cart_out(db, request, user_id)


@cart_router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: int,
    request: Request,
    claims: dict = Depends(require_user),
    db: Session = Depends(get_db),
):
    user_id = user_id_from(claims)
    if not carts.remove_from_cart(db, user_id, product_id):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return _cart_out(db, request, user_id)


@cart_router.delete("")
def clear(claims: dict = Depends(require_user), db: Session = Depends(get_db)):
    removed = carts.clear_cart(db, user_id_from(claims))
    return {"ok": True, "itemsCleared": removed}
