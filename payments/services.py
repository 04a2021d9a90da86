"""Payment gateway adapter.

Opens gateway payment intents for orders, verifies the signed confirmations
the gateway sends back, and records failures and refunds.  Every order state
change goes through ``orders.state_machine``.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import DatabaseError, transaction
from django.utils import timezone

from marketplace.auth import RequestContext
from marketplace.errors import (
    AlreadyProcessed,
    ConflictError,
    GatewayUnavailable,
    InvalidTransition,
    NotFoundError,
    RefundNotEligible,
    SignatureInvalid,
    ValidationError,
)
from orders import state_machine
from orders.filters import OrderByIntent, find_orders
from orders.models import Order, OrderStatus, PaymentStatus
from orders.services import get_owned_order
from orders.utils import money

from .emails import send_payment_confirmation
from .integrations import gateway
from .integrations.gateway import GatewayError
from .models import Refund, RefundStatus
from .utils import gateway_setting, to_minor_units, verify_payment_signature

logger = logging.getLogger(__name__)

REFUND_STATUS_MAP = {
    "pending": RefundStatus.PENDING,
    "created": RefundStatus.PENDING,
    "processed": RefundStatus.PROCESSED,
    "failed": RefundStatus.FAILED,
}


def _currency() -> str:
    return gateway_setting("CURRENCY", required=False) or "INR"


def _intent_dict(order, intent: dict | None = None) -> dict:
    intent = intent or {}
    return {
        "gatewayOrderId": order.payment_intent_id,
        "amount": intent.get("amount", to_minor_units(order.total_amount)),
        "currency": intent.get("currency", _currency()),
        "receipt": intent.get("receipt", order.order_number),
        "orderNumber": order.order_number,
        "totalAmount": order.total_amount,
    }


def _lock_by_intent(gateway_order_id: str) -> Order:
    order = find_orders(OrderByIntent(gateway_order_id), Order.objects.select_for_update()).first()
    if order is None:
        raise NotFoundError("Order not found for this payment")
    return order


def create_order_payment(ctx: RequestContext, order_id) -> dict:
    """Open (or return the already open) gateway payment intent for an order."""
    order = get_owned_order(ctx, order_id)
    if order.payment_status != PaymentStatus.PENDING:
        raise AlreadyProcessed()
    if order.payment_intent_id:
        return _intent_dict(order)

    try:
        intent = gateway.create_order(
            amount=to_minor_units(order.total_amount),
            currency=_currency(),
            receipt=order.order_number,
        )
    except GatewayError as e:
        logger.error("Gateway order creation failed for %s: %s", order.order_number, e)
        raise GatewayUnavailable()

    # set-once: only the first intent to land is kept
    updated = Order.objects.filter(pk=order.pk, payment_intent_id="").update(
        payment_intent_id=intent["id"], updated_at=timezone.now(),
    )
    if not updated:
        order.refresh_from_db()
        logger.warning(
            "Order %s already has intent %s, discarding gateway order %s",
            order.order_number, order.payment_intent_id, intent["id"],
        )
        return _intent_dict(order)

    order.payment_intent_id = intent["id"]
    logger.info("Payment intent %s opened for order %s", intent["id"], order.order_number)
    return _intent_dict(order, intent)


def _confirmation_dict(order, gateway_payment_id: str) -> dict:
    return {
        "success": True,
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "paymentId": gateway_payment_id,
        "message": "Payment verified successfully",
    }


def _confirm(order, gateway_payment_id: str, remarks: str, actor_id=None) -> dict:
    """Mark a locked order as paid; repeat deliveries of the same payment are no-ops."""
    if order.gateway_payment_id == gateway_payment_id and order.payment_status in (
        PaymentStatus.PAID, PaymentStatus.REFUNDED,
    ):
        logger.info("Duplicate confirmation of payment %s for order %s ignored", gateway_payment_id, order.order_number)
        return _confirmation_dict(order, gateway_payment_id)
    if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        logger.warning(
            "Order %s already paid by %s, rejecting payment %s",
            order.order_number, order.gateway_payment_id, gateway_payment_id,
        )
        raise AlreadyProcessed()

    order.gateway_payment_id = gateway_payment_id
    try:
        state_machine.transition(
            order,
            status=OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            remarks=remarks,
            actor_id=actor_id,
            extra_fields=("gateway_payment_id",),
        )
    except InvalidTransition:
        logger.error(
            "Captured payment %s cannot confirm order %s in state %s/%s",
            gateway_payment_id, order.order_number, order.status, order.payment_status,
        )
        raise
    transaction.on_commit(lambda: send_payment_confirmation(order=order))
    logger.info("Payment %s confirmed for order %s", gateway_payment_id, order.order_number)
    return _confirmation_dict(order, gateway_payment_id)


def verify_payment(gateway_order_id, gateway_payment_id, signature) -> dict:
    """Confirm a payment from the gateway's signed callback.

    The signature is recomputed here; a mismatch changes nothing and is
    logged as a possible forgery.  Safe to call repeatedly for the same
    payment.
    """
    fields = (gateway_order_id, gateway_payment_id, signature)
    if not all(isinstance(f, str) and f for f in fields):
        raise ValidationError("gatewayOrderId, gatewayPaymentId and signature are required strings")
    if not verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
        logger.warning(
            "Signature mismatch for gateway order %s payment %s: possible forgery",
            gateway_order_id, gateway_payment_id,
        )
        raise SignatureInvalid()

    with transaction.atomic():
        order = _lock_by_intent(gateway_order_id)
        return _confirm(order, gateway_payment_id, "Payment successful via gateway")


def handle_payment_failure(ctx: RequestContext | None, gateway_order_id, reason=None) -> dict:
    """Record a failed payment attempt; a repeated failure report is a no-op."""
    if not isinstance(gateway_order_id, str) or not gateway_order_id:
        raise ValidationError("gatewayOrderId is required")
    with transaction.atomic():
        order = _lock_by_intent(gateway_order_id)
        if ctx is not None and order.user_id != ctx.user_id:
            raise NotFoundError("Order not found for this payment")
        if order.payment_status == PaymentStatus.FAILED:
            logger.info("Duplicate failure report for order %s ignored", order.order_number)
        else:
            state_machine.transition(
                order,
                payment_status=PaymentStatus.FAILED,
                remarks=f"Payment failed: {reason or 'Unknown reason'}",
                actor_id=ctx.actor_id if ctx else None,
            )
            logger.info("Payment failure recorded for order %s: %s", order.order_number, reason)
    return {
        "success": True,
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "message": "Payment failure recorded",
    }


def retry_payment(ctx: RequestContext, order_id) -> dict:
    """Reopen a failed payment; the existing gateway order accepts new attempts."""
    with transaction.atomic():
        order = get_owned_order(ctx, order_id, for_update=True)
        if order.payment_status != PaymentStatus.FAILED:
            raise ConflictError("Only failed payments can be retried")
        state_machine.transition(
            order, payment_status=PaymentStatus.PENDING, remarks="Payment retry opened", actor_id=ctx.actor_id,
        )
    return _intent_dict(order)


def _refund_amount(raw, total: Decimal) -> Decimal:
    if raw is None:
        return total
    if isinstance(raw, bool):
        raise ValidationError("Invalid refund amount")
    try:
        amount = money(raw)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Invalid refund amount")
    if amount <= 0 or amount > total:
        raise ValidationError(f"Refund amount must be between 0.01 and {total}")
    return amount


def refund_payment(ctx: RequestContext, order_id, amount=None) -> dict:
    """Refund a paid order and cancel it.

    The gateway refund request runs while the order row is locked, so two
    refund calls cannot both reach the gateway.  The gateway settles refunds
    asynchronously; the ``Refund`` row created here is updated later by
    :func:`handle_refund_update`.
    """
    with transaction.atomic():
        order = get_owned_order(ctx, order_id, for_update=True)
        if order.payment_status != PaymentStatus.PAID:
            raise RefundNotEligible()
        if not order.payment_intent_id or not order.gateway_payment_id:
            raise RefundNotEligible("Payment intent not found")
        refund_amount = _refund_amount(amount, order.total_amount)
        state_machine.ensure_allowed(order, status=OrderStatus.CANCELLED, payment_status=PaymentStatus.REFUNDED)

        currency = _currency()
        try:
            result = gateway.create_refund(
                order.gateway_payment_id, amount=to_minor_units(refund_amount), receipt=order.order_number,
            )
        except GatewayError as e:
            logger.error("Gateway refund failed for order %s: %s", order.order_number, e)
            raise GatewayUnavailable()
        logger.info(
            "Gateway accepted refund %s of %s %s for order %s",
            result["id"], currency, refund_amount, order.order_number,
        )

        try:
            state_machine.transition(
                order,
                status=OrderStatus.CANCELLED,
                payment_status=PaymentStatus.REFUNDED,
                remarks=f"Refund initiated for {currency} {refund_amount}",
                actor_id=ctx.actor_id,
            )
            refund = Refund.objects.create(
                order=order,
                amount=refund_amount,
                currency=currency,
                gateway_refund_id=result["id"],
                status=REFUND_STATUS_MAP.get(str(result.get("status", "")).lower(), RefundStatus.PENDING),
                last_payload=result,
            )
        except DatabaseError:
            logger.exception(
                "Gateway refund %s for order %s not recorded locally; reconcile manually",
                result["id"], order.order_number,
            )
            raise

    logger.info("Refund %s of %s %s initiated for order %s", refund.gateway_refund_id, currency, refund_amount, order.order_number)
    return {
        "success": True,
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "refundAmount": refund_amount,
        "refundId": refund.gateway_refund_id,
        "refundStatus": refund.status,
        "message": "Refund processed successfully",
    }


def handle_refund_update(gateway_refund_id, status, payload=None) -> dict:
    """Apply the gateway's asynchronous verdict on a refund."""
    new_status = REFUND_STATUS_MAP.get(str(status or "").lower())
    if not gateway_refund_id or new_status is None:
        raise ValidationError("Refund id and a known refund status are required")

    with transaction.atomic():
        refund = Refund.objects.select_for_update().select_related("order").filter(
            gateway_refund_id=gateway_refund_id
        ).first()
        if refund is None:
            raise NotFoundError("Refund not found")
        if refund.status != new_status:
            if refund.status != RefundStatus.PENDING:
                raise ConflictError(f"Refund already {refund.status}")
            refund.status = new_status
            refund.last_payload = payload
            refund.save(update_fields=["status", "last_payload", "updated_at"])
            if new_status == RefundStatus.FAILED:
                logger.error(
                    "Refund %s for order %s failed at the gateway; needs manual follow-up",
                    gateway_refund_id, refund.order.order_number,
                )
            else:
                logger.info("Refund %s for order %s processed", gateway_refund_id, refund.order.order_number)

    return {"refundId": refund.gateway_refund_id, "status": refund.status, "orderId": refund.order_id}


def get_payment_status(ctx: RequestContext, order_id) -> dict:
    order = get_owned_order(ctx, order_id)
    return {
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "paymentStatus": order.payment_status,
        "totalAmount": order.total_amount,
        "paymentIntentId": order.payment_intent_id or None,
    }


def reconcile_order(order) -> bool:
    """Poll the gateway for a captured payment the callback never delivered.

    Returns True when the order was (or already had been) confirmed.
    """
    try:
        payments = gateway.fetch_order_payments(order.payment_intent_id)
    except GatewayError as e:
        logger.error("Gateway lookup failed for order %s: %s", order.order_number, e)
        raise GatewayUnavailable()

    captured = next((p for p in payments if str(p.get("status", "")).lower() == "captured" and p.get("id")), None)
    if captured is None:
        return False
    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        _confirm(locked, captured["id"], "Payment reconciled with gateway")
    return True
