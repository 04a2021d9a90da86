"""Allowed order and payment status transitions.

Every accepted transition saves the order and appends exactly one ledger
entry in the same atomic block.  Anything outside the tables below raises
``InvalidTransition``.
"""
import logging

from django.db import transaction

from marketplace.errors import InvalidTransition

from . import ledger
from .models import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

STATUS_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def _check(field: str, table: dict, current: str, requested: str | None) -> bool:
    """Return True if the field changes; raise if the change is not allowed."""
    if requested is None or requested == current:
        return False
    if requested not in table.get(current, ()):
        raise InvalidTransition(field, current, requested)
    return True


def ensure_allowed(order, *, status: str | None = None, payment_status: str | None = None) -> tuple[bool, bool]:
    """Validate a transition without applying it.

    Returns which of (status, payment_status) would change.
    """
    status_changes = _check("status", STATUS_TRANSITIONS, order.status, status)
    payment_changes = _check("paymentStatus", PAYMENT_TRANSITIONS, order.payment_status, payment_status)
    if not (status_changes or payment_changes):
        raise InvalidTransition(
            "status", f"{order.status}/{order.payment_status}",
            f"{status or order.status}/{payment_status or order.payment_status}",
        )
    return status_changes, payment_changes


def transition(order, *, status: str | None = None, payment_status: str | None = None,
               remarks: str = "", actor_id=None, extra_fields=()):
    """Move ``order`` to the requested state and record it in the ledger.

    ``extra_fields`` lists other already-assigned model fields to persist in
    the same save, such as the confirmed gateway payment id.
    """
    status_changes, payment_changes = ensure_allowed(order, status=status, payment_status=payment_status)
    previous = (order.status, order.payment_status)
    update_fields = ["updated_at", *extra_fields]
    if status_changes:
        order.status = status
        update_fields.append("status")
    if payment_changes:
        order.payment_status = payment_status
        update_fields.append("payment_status")

    with transaction.atomic():
        order.save(update_fields=update_fields)
        ledger.append(order, order.status, remarks, actor_id=actor_id, payment_status=order.payment_status)

    logger.info(
        "Order %s moved %s/%s -> %s/%s",
        order.order_number, previous[0], previous[1], order.status, order.payment_status,
    )
    return order
