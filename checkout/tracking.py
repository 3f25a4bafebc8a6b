from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .models import Order, OrderStatus

ESTIMATED_DELIVERY_DAYS = 5

LOCATIONS = {
    "pending": "Processing",
    "confirmed": "Warehouse, Mumbai",
    "processing": "Warehouse, Mumbai",
    "shipped": "In Transit",
    "out_for_delivery": "Out for Delivery",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}

# (stage, description, day offset from order creation)
STAGES = [
    ("processing", "We are preparing your order", 1),
    ("shipped", "Your order has been shipped", 2),
    ("out_for_delivery", "Your order is out for delivery", 4),
    ("delivered", "Your order has been delivered", 5),
]

_REACHED = {
    OrderStatus.PENDING.value: 0,
    OrderStatus.PROCESSING.value: 1,
    OrderStatus.SHIPPED.value: 2,
    OrderStatus.OUT_FOR_DELIVERY.value: 3,
    OrderStatus.DELIVERED.value: 4,
}


def location_for(status: str) -> str:
    return LOCATIONS.get(status, "Unknown")


def _offset(ts: Optional[datetime], days: int) -> Optional[datetime]:
    return ts + timedelta(days=days) if ts else None


def tracking_events(order: Order) -> List[Dict[str, Any]]:
    """
    Timeline of the stages reached so far. The current stage is stamped with
    the order's last update; earlier stages carry their planned timestamps.
    """
    events = [{
        "status": "confirmed",
        "timestamp": order.created_at,
        "description": "Your order has been confirmed",
        "location": location_for("confirmed"),
    }]

    reached = _REACHED.get(order.status, 0)
    for i, (stage, description, days) in enumerate(STAGES[:reached], start=1):
        is_current = i == reached
        events.append({
            "status": stage,
            "timestamp": order.updated_at if is_current else _offset(order.created_at, days),
            "description": description,
            "location": location_for(stage),
        })

    if order.status == OrderStatus.CANCELLED.value:
        events.append({
            "status": "cancelled",
            "timestamp": order.updated_at,
            "description": "Your order has been cancelled",
            "location": location_for("cancelled"),
        })
    return events


def build_tracking(order: Order) -> Dict[str, Any]:
    return {
        "order_number": order.order_number,
        "status": order.status,
        "location": location_for(order.status),
        "estimated_delivery": _offset(order.created_at, ESTIMATED_DELIVERY_DAYS),
        "last_updated": order.updated_at,
        "events": tracking_events(order),
    }
