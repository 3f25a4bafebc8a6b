import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import templates
from .emailer import send_email
from .whatsapp import send_whatsapp

logger = logging.getLogger("notifier")

Message = Tuple[str, Dict[str, Any]]


def _contact(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], str]:
    contact = payload.get("contact") or {}
    return contact.get("email"), contact.get("phone"), contact.get("name") or "Valued Customer"


def _on_order_confirmed(payload: Dict[str, Any]) -> None:
    """
    payload: {"contact": {email, name, phone}, "order": {...},
              "notify_via": "email" | "whatsapp" | "both"}
    """
    email, phone, name = _contact(payload)
    order = payload.get("order") or {}
    via = payload.get("notify_via") or "email"

    if via in ("email", "both") and email:
        subject, body = templates.order_confirmation_email(order, name)
        send_email(to_email=email, subject=subject, html_body=body)
    if via in ("whatsapp", "both") and phone:
        send_whatsapp(phone, templates.order_confirmation_text(order))

    logger.info("Order %s confirmation handled via %s", order.get("order_number"), via)


def _on_status_changed(payload: Dict[str, Any]) -> None:
    email, phone, name = _contact(payload)
    order = payload.get("order") or {}
    status = payload.get("status") or order.get("status") or ""

    if email:
        subject, body = templates.order_status_email(order, status, name)
        send_email(to_email=email, subject=subject, html_body=body)
    if phone:
        send_whatsapp(phone, templates.order_status_text(order, status))

    logger.info("Order %s status %s notification handled", order.get("order_number"), status)


HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    "order.confirmed": _on_order_confirmed,
    "order.status_changed": _on_status_changed,
}


def handle_event(event_type: str, payload: Dict[str, Any]) -> None:
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring event_type=%s", event_type)
        return
    handler(payload)


def decode_message(raw: Any) -> Optional[Message]:
    """
    Accepts {"type": ..., "payload": {...}} as a dict or JSON string.
    An SNS notification wrapping that message (SNS -> SQS fan-out) is unwrapped.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None

    if raw.get("Type") == "Notification" and "Message" in raw:
        return decode_message(raw["Message"])

    event_type = raw.get("type") or raw.get("event_type")
    payload = raw.get("payload") or {}
    if isinstance(event_type, str) and isinstance(payload, dict):
        return event_type, payload
    return None


def _process_sqs(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Partial batch response: only the failed message ids are retried."""
    failed: List[Dict[str, str]] = []

    for record in records:
        message_id = record.get("messageId") or ""
        message = decode_message(record.get("body"))
        try:
            if message is None:
                raise ValueError("undecodable message")
            handle_event(*message)
        except Exception:
            logger.exception("SQS message failed message_id=%s", message_id)
            if message_id:
                failed.append({"itemIdentifier": message_id})

    logger.info("SQS batch size=%s failed=%s", len(records), len(failed))
    return {"batchItemFailures": failed}


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    """Entry point for SQS batches, EventBridge rules and direct invokes."""
    if isinstance(event, dict):
        records = event.get("Records")
        if isinstance(records, list) and records:
            return _process_sqs(records)

        detail_type = event.get("detail-type") or event.get("detailType")
        if isinstance(detail_type, str) and isinstance(event.get("detail"), dict):
            handle_event(detail_type, event["detail"])
            return {"ok": True, "source": "eventbridge"}

        message = decode_message(event)
        if message:
            handle_event(*message)
            return {"ok": True, "source": "direct"}

    logger.warning("Unsupported event format: %r", event)
    return {"ok": False, "error": "Unsupported event format"}
