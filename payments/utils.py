"""Signature and amount helpers for the payment gateway."""

import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


def gateway_setting(name: str, required: bool = True):
    value = settings.PAYMENT_GATEWAY.get(name)
    if required and not value:
        logger.error("PAYMENT_GATEWAY[%r] missing in settings", name)
        raise ImproperlyConfigured(f"PAYMENT_GATEWAY['{name}'] setting is required")
    return value


def hmac_sha256_hex(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, received: str | None) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), (received or "").strip().encode("utf-8"))


def payment_signature(gateway_order_id: str, gateway_payment_id: str) -> str:
    """Signature the gateway attaches to a successful checkout.

    HMAC-SHA256 (hex) of ``"<gateway order id>|<gateway payment id>"`` keyed
    with the API key secret.
    """
    return hmac_sha256_hex(gateway_setting("KEY_SECRET"), f"{gateway_order_id}|{gateway_payment_id}")


def verify_payment_signature(gateway_order_id: str, gateway_payment_id: str, received_sig: str | None) -> bool:
    return _matches(payment_signature(gateway_order_id, gateway_payment_id), received_sig)


def verify_webhook_signature(raw_body: bytes, received_sig: str | None) -> bool:
    return _matches(hmac_sha256_hex(gateway_setting("WEBHOOK_SECRET"), raw_body), received_sig)


def to_minor_units(amount) -> int:
    """Rupees to paise, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
