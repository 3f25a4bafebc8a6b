import json
import logging
import os
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

EXCHANGE = os.getenv("EVENT_EXCHANGE", "checkout.events")

# boto3 client is kept between Lambda invocations
_sqs_client = None


def _encode(event_type: str, payload: Dict[str, Any]) -> str:
    """Wire format shared by every backend: {"type": ..., "payload": {...}}.

    Decimal amounts and datetimes go out as strings.
    """
    return json.dumps({"type": event_type, "payload": payload}, default=str)


def _deliver_inline(event_type: str, body: str) -> None:
    from notifier.main import handle_event

    handle_event(event_type, json.loads(body)["payload"])


def _rabbitmq_params():
    import pika

    url = os.getenv("RABBITMQ_URL")
    if not url:
        raise RuntimeError("RABBITMQ_URL is not set")

    params = pika.URLParameters(url)
    params.heartbeat = int(os.getenv("RABBITMQ_HEARTBEAT", "30"))
    params.blocked_connection_timeout = float(os.getenv("RABBITMQ_BLOCKED_TIMEOUT", "5"))
    if os.getenv("RABBITMQ_SOCKET_TIMEOUT"):
        params.socket_timeout = float(os.environ["RABBITMQ_SOCKET_TIMEOUT"])
    return params


def _deliver_rabbitmq(event_type: str, body: str) -> None:
    import pika

    conn = pika.BlockingConnection(_rabbitmq_params())
    try:
        channel = conn.channel()
        channel.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
        channel.basic_publish(
            exchange=EXCHANGE,
            routing_key=event_type,
            body=body.encode("utf-8"),
            properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
        )
    finally:
        if conn.is_open:
            conn.close()


def _deliver_sqs(event_type: str, body: str) -> None:
    global _sqs_client
    import boto3

    queue_url = os.getenv("SQS_QUEUE_URL")
    if not queue_url:
        raise RuntimeError("SQS_QUEUE_URL is not set")
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs")

    extra: Dict[str, Any] = {}
    if queue_url.endswith(".fifo"):
        # one group per event type keeps status changes in order
        extra["MessageGroupId"] = event_type

    _sqs_client.send_message(
        QueueUrl=queue_url,
        MessageBody=body,
        MessageAttributes={"type": {"DataType": "String", "StringValue": event_type}},
        **extra,
    )


BACKENDS: Dict[str, Callable[[str, str], None]] = {
    "inline": _deliver_inline,
    "rabbitmq": _deliver_rabbitmq,
    "sqs": _deliver_sqs,
}


def publish(event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
    """
    Send one event through the backend named by EVENT_BACKEND
    (inline, rabbitmq or sqs; inline by default).

    safe=True logs and drops any failure. Checkout uses it for notifications,
    which must never fail an order that is already committed.
    """
    name = os.getenv("EVENT_BACKEND", "inline").strip().lower()
    try:
        deliver = BACKENDS.get(name)
        if deliver is None:
            raise RuntimeError(f"Unsupported EVENT_BACKEND={name}")
        deliver(event_type, _encode(event_type, payload))
        logger.debug("Published %s via %s", event_type, name)
    except Exception:
        if not safe:
            raise
        logger.exception("Event publish failed type=%s backend=%s", event_type, name)
