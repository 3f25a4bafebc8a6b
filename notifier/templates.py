import os
from datetime import datetime
from html import escape
from typing import Any, Dict, Tuple

STATUS_LINES = {
    "processing": "Your order is being prepared",
    "shipped": "Your order has been shipped",
    "out_for_delivery": "Your order is out for delivery",
    "delivered": "Your order has been delivered",
    "cancelled": "Your order has been cancelled",
}


def _store() -> str:
    return os.getenv("STORE_NAME", "VSP Electronics")


def _frontend() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:4200").rstrip("/")


def _amount(value: Any) -> str:
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return "0.00"


def _date(value: Any) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y")
    return ""


def order_confirmation_email(order: Dict[str, Any], name: str) -> Tuple[str, str]:
    number = escape(str(order.get("order_number", "")))
    rows = "".join(
        "<tr>"
        f"<td>{escape(str(it.get('name') or ''))}</td>"
        f"<td>{int(it.get('quantity') or 0)}</td>"
        f"<td>{_amount(it.get('price'))}</td>"
        f"<td>{_amount(it.get('total'))}</td>"
        "</tr>"
        for it in order.get("items") or []
    )
    subject = f"Order Confirmation - Order #{order.get('order_number', '')}"
    body = (
        f"<h3>Thank you for your order, {escape(name)}!</h3>"
        f"<p>Order <b>#{number}</b> has been received.</p>"
        "<table><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>"
        f"{rows}</table>"
        f"<p>Subtotal: {_amount(order.get('subtotal'))}<br>"
        f"Tax: {_amount(order.get('tax'))}<br>"
        f"Shipping: {_amount(order.get('shipping'))}<br>"
        f"<b>Total: {_amount(order.get('total'))}</b></p>"
        f"<p>Payment method: {escape(str(order.get('payment_method') or ''))}</p>"
        f"<p>Estimated delivery: {_date(order.get('estimated_delivery'))}</p>"
        f"<p><a href='{_frontend()}/order/{number}'>Track your order</a></p>"
    )
    return subject, body


def order_status_email(order: Dict[str, Any], status: str, name: str) -> Tuple[str, str]:
    number = escape(str(order.get("order_number", "")))
    line = STATUS_LINES.get(status, status)
    tracking = order.get("tracking_number")
    subject = f"Order Status Update - Order #{order.get('order_number', '')}"
    body = (
        f"<h3>Hi {escape(name)},</h3>"
        f"<p>Order <b>#{number}</b>: {escape(line)}.</p>"
        + (f"<p>Tracking number: <b>{escape(str(tracking))}</b></p>" if tracking else "")
        + f"<p><a href='{_frontend()}/order/{number}'>Track order</a></p>"
    )
    return subject, body


def order_confirmation_text(order: Dict[str, Any]) -> str:
    return "\n".join([
        "*Order Confirmed!*",
        "",
        f"Order ID: {order.get('order_number', '')}",
        f"Amount: {_amount(order.get('total'))}",
        f"Items: {len(order.get('items') or [])}",
        "",
        f"Estimated Delivery: {_date(order.get('estimated_delivery'))}",
        "",
        f"Thank you for shopping with {_store()}!",
    ])


def order_status_text(order: Dict[str, Any], status: str) -> str:
    return "\n".join([
        "*Order Status Update*",
        "",
        f"Order ID: {order.get('order_number', '')}",
        f"Status: {STATUS_LINES.get(status, status)}",
        "",
        f"Track your order at: {_frontend()}/order/{order.get('order_number', '')}",
    ])
