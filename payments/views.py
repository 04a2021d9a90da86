import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from marketplace.auth import RequestContext, api_login_required, json_body
from marketplace.errors import SignatureInvalid, ValidationError

from . import services
from .utils import verify_webhook_signature

logger = logging.getLogger(__name__)


@require_POST
@api_login_required
def create_order_payment_view(request, order_id):
    return JsonResponse(services.create_order_payment(RequestContext.from_request(request), order_id))


@csrf_exempt
@require_POST
def verify_payment_view(request):
    """Gateway-signed confirmation; trusted only through its signature."""
    body = json_body(request)
    result = services.verify_payment(
        body.get("gatewayOrderId"),
        body.get("gatewayPaymentId"),
        body.get("signature"),
    )
    return JsonResponse(result)


@require_POST
@api_login_required
def payment_failure_view(request):
    body = json_body(request)
    result = services.handle_payment_failure(
        RequestContext.from_request(request),
        body.get("gatewayOrderId"),
        body.get("reason"),
    )
    return JsonResponse(result)


@require_POST
@api_login_required
def retry_payment_view(request, order_id):
    return JsonResponse(services.retry_payment(RequestContext.from_request(request), order_id))


@require_POST
@api_login_required
def refund_view(request, order_id):
    body = json_body(request)
    result = services.refund_payment(RequestContext.from_request(request), order_id, body.get("amount"))
    return JsonResponse(result)


@require_GET
@api_login_required
def payment_status_view(request, order_id):
    return JsonResponse(services.get_payment_status(RequestContext.from_request(request), order_id))


@csrf_exempt
@require_POST
def refund_webhook_view(request):
    if not verify_webhook_signature(request.body, request.headers.get("X-Gateway-Signature")):
        logger.warning("Refund webhook with bad signature from %s", request.META.get("REMOTE_ADDR"))
        raise SignatureInvalid("Webhook signature mismatch")

    try:
        payload = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON")

    # {"event": "refund.processed", "payload": {"refund": {"entity": {...}}}}
    entity = ((payload.get("payload") or {}).get("refund") or {}).get("entity") or {}
    refund_id = entity.get("id") or payload.get("refund_id") or ""
    event = str(payload.get("event") or "")
    status = entity.get("status") or payload.get("status") or event.rpartition(".")[2]

    result = services.handle_refund_update(refund_id, status, payload)
    return JsonResponse(result)
