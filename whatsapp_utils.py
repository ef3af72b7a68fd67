import logging

import requests

import config

logger = logging.getLogger(__name__)


class WhatsAppError(Exception):
    pass


def send_text(text, number=None):
    """Sends a text message through the Evolution API gateway."""
    if not config.EVOLUTION_API_KEY:
        raise WhatsAppError("EVOLUTION_API_KEY is not configured.")
    destination = number or config.WHATSAPP_DESTINATION
    if not destination:
        raise WhatsAppError("No WhatsApp destination configured.")
    url = f"{config.EVOLUTION_URL.rstrip('/')}/message/sendText/{config.EVOLUTION_SESSION_ID}"
    headers = {"Content-Type": "application/json", "apikey": config.EVOLUTION_API_KEY}
    try:
        response = requests.post(url, json={"number": destination, "text": text}, headers=headers, timeout=30)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        body = getattr(getattr(e, "response", None), "text", None)
        raise WhatsAppError(f"Error sending WhatsApp message: {e} {body or ''}".strip()) from e
    try:
        result = response.json()
    except ValueError:
        result = {"raw": response.text}
    logger.info("WhatsApp message sent to %s: %s", destination, result)
    return result
