"""Client for the Razorpay-compatible payment gateway REST API.

Every call is bounded by ``PAYMENT_GATEWAY['TIMEOUT']``.  Transport errors,
timeouts and error responses all surface as :class:`GatewayError`; callers
decide what that means for their own state.
"""
import json
import logging

import requests
from requests import RequestException
from requests.auth import HTTPBasicAuth

from ..utils import gateway_setting

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class GatewayError(Exception):
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


def _url(path: str) -> str:
    return gateway_setting("BASE_URL").rstrip("/") + path


def _auth() -> HTTPBasicAuth:
    return HTTPBasicAuth(gateway_setting("KEY_ID"), gateway_setting("KEY_SECRET"))


def _request(method: str, path: str, payload: dict | None = None) -> dict:
    timeout = gateway_setting("TIMEOUT", required=False) or 10
    try:
        resp = requests.request(
            method, _url(path), json=payload, headers=COMMON_HEADERS, auth=_auth(), timeout=timeout,
        )
    except RequestException as e:
        raise GatewayError(f"Gateway request failed: {e}")
    logger.debug("Gateway %s %s -> HTTP %s", method, path, resp.status_code)

    try:
        data = resp.json()
    except ValueError:
        data = {"raw": resp.text}

    if resp.status_code >= 400:
        error = data.get("error") if isinstance(data, dict) else None
        description = (error or {}).get("description") if isinstance(error, dict) else None
        raise GatewayError(
            f"{method} {path} failed: HTTP {resp.status_code} {description or json.dumps(data)[:500]}",
            status_code=resp.status_code,
        )
    if not isinstance(data, dict):
        raise GatewayError(f"{method} {path} returned an unexpected body", status_code=resp.status_code)
    return data


def create_order(*, amount: int, currency: str, receipt: str) -> dict:
    """Open a payment intent; ``amount`` is in minor units (paise)."""
    payload = {
        "amount": amount,
        "currency": currency,
        "receipt": receipt,
        "payment_capture": 1,
    }
    data = _request("POST", "/orders", payload)
    if not data.get("id"):
        raise GatewayError(f"Gateway order response missing id for receipt {receipt}")
    return data


def fetch_order_payments(gateway_order_id: str) -> list[dict]:
    data = _request("GET", f"/orders/{gateway_order_id}/payments")
    return list(data.get("items") or [])


def create_refund(gateway_payment_id: str, *, amount: int, receipt: str = "") -> dict:
    payload = {"amount": amount}
    if receipt:
        payload["receipt"] = receipt
    data = _request("POST", f"/payments/{gateway_payment_id}/refund", payload)
    if not data.get("id"):
        raise GatewayError(f"Gateway refund response missing id for payment {gateway_payment_id}")
    return data
