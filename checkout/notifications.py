import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

from sqlalchemy.orm import sessionmaker

from common.events import publish

from .cart import remove_cart_products
from .identity import get_user

logger = logging.getLogger(__name__)


@dataclass
class BuyerContact:
    email: Optional[str]
    name: str
    phone: Optional[str]


class NotificationSink(Protocol):
    def notify_order_confirmed(self, contact: BuyerContact, summary: Dict[str, Any], notify_via: str) -> None: ...

    def notify_order_status(self, contact: BuyerContact, summary: Dict[str, Any], status: str) -> None: ...


class EventNotificationSink:
    """Hands notifications to the event backend; delivery happens in the notifier."""

    def notify_order_confirmed(self, contact: BuyerContact, summary: Dict[str, Any], notify_via: str) -> None:
        publish(
            "order.confirmed",
            {"contact": asdict(contact), "order": summary, "notify_via": notify_via},
            safe=True,
        )

    def notify_order_status(self, contact: BuyerContact, summary: Dict[str, Any], status: str) -> None:
        publish(
            "order.status_changed",
            {"contact": asdict(contact), "order": summary, "status": status},
            safe=True,
        )


def contact_for(user, fallback: Optional[Dict[str, Any]] = None) -> BuyerContact:
    """Account details win; the order's shipping address fills the gaps."""
    fallback = fallback or {}
    email = (user.email if user else None) or fallback.get("email")
    name = (user.first_name if user else None) or fallback.get("first_name") or "Valued Customer"
    phone = (user.phone if user else None) or fallback.get("phone")
    return BuyerContact(email=email, name=name, phone=phone)


def after_order_committed(
    session_factory: sessionmaker,
    sink: NotificationSink,
    *,
    buyer_id: int,
    summary: Dict[str, Any],
    notify_via: str,
    cart_product_ids: Sequence[int] = (),
) -> None:
    """
    Post-commit side effects of a checkout. Runs after the response is sent,
    in its own session. Every failure here is logged and dropped: the order
    is already committed.
    """
    try:
        with session_factory() as db:
            if cart_product_ids:
                remove_cart_products(db, buyer_id, cart_product_ids)
            user = get_user(db, buyer_id)
            contact = contact_for(user, summary.get("shipping_address"))
    except Exception:
        logger.exception("Post-commit cart/contact step failed order=%s", summary.get("order_number"))
        contact = contact_for(None, summary.get("shipping_address"))

    if notify_via == "none":
        return

    try:
        sink.notify_order_confirmed(contact, summary, notify_via)
    except Exception:
        logger.exception("Order confirmation notification failed order=%s", summary.get("order_number"))


def notify_status_change(
    session_factory: sessionmaker,
    sink: NotificationSink,
    *,
    buyer_id: Optional[int],
    summary: Dict[str, Any],
    status: str,
) -> None:
    try:
        user = None
        if buyer_id is not None:
            with session_factory() as db:
                user = get_user(db, buyer_id)
        contact = contact_for(user, summary.get("shipping_address"))
        sink.notify_order_status(contact, summary, status)
        logger.info("Customer notified order=%s status=%s", summary.get("order_number"), status)
    except Exception:
        logger.exception("Status notification failed order=%s", summary.get("order_number"))
