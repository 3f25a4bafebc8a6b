import os
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
META_GRAPH_API = "https://graph.facebook.com/v18.0"


def _provider() -> str:
    return os.getenv("WHATSAPP_PROVIDER", "twilio").strip().lower()  # twilio | meta


def is_configured() -> bool:
    provider = _provider()
    if provider == "twilio":
        return bool(
            os.getenv("TWILIO_ACCOUNT_SID")
            and os.getenv("TWILIO_AUTH_TOKEN")
            and os.getenv("WHATSAPP_BUSINESS_NUMBER")
        )
    if provider == "meta":
        return bool(os.getenv("WHATSAPP_BUSINESS_PHONE_ID") and os.getenv("WHATSAPP_BUSINESS_API_TOKEN"))
    return False


def send_whatsapp(to_phone: str, message: str, *, client: Optional[httpx.Client] = None) -> Optional[str]:
    """
    Send a WhatsApp text message. Returns the provider message id, or None
    when no provider is configured (the message is logged and skipped).
    Provider errors raise.
    """
    if not is_configured():
        logger.warning("WhatsApp not configured, skipping message to=%s", to_phone)
        return None

    timeout = float(os.getenv("WHATSAPP_TIMEOUT", "10"))
    own_client = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        if _provider() == "twilio":
            message_id = _send_twilio(client, to_phone, message)
        else:
            message_id = _send_meta(client, to_phone, message)
    finally:
        if own_client:
            client.close()

    logger.info("WhatsApp sent via %s to=%s id=%s", _provider(), to_phone, message_id)
    return message_id


def _send_twilio(client: httpx.Client, to_phone: str, message: str) -> str:
    sid = os.environ["TWILIO_ACCOUNT_SID"]
    token = os.environ["TWILIO_AUTH_TOKEN"]
    sender = os.environ["WHATSAPP_BUSINESS_NUMBER"]

    r = client.post(
        f"{TWILIO_API}/Accounts/{sid}/Messages.json",
        auth=(sid, token),
        data={"From": f"whatsapp:{sender}", "To": f"whatsapp:{to_phone}", "Body": message},
    )
    r.raise_for_status()
    return r.json()["sid"]


def _send_meta(client: httpx.Client, to_phone: str, message: str) -> str:
    phone_id = os.environ["WHATSAPP_BUSINESS_PHONE_ID"]
    token = os.environ["WHATSAPP_BUSINESS_API_TOKEN"]

    r = client.post(
        f"{META_GRAPH_API}/{phone_id}/messages",
        headers={"Authorization": f"Bearer {token}"},
        json={
            "messaging_product": "whatsapp",
            "to": to_phone,
            "type": "text",
            "text": {"preview_url": True, "body": message},
        },
    )
    r.raise_for_status()
    return r.json()["messages"][0]["id"]
