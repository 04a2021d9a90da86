"""Append-only status history for orders.

The ordered entries of an order are the authoritative answer to "what
happened and when".  Nothing here updates or deletes an entry.
"""
from .models import StatusHistoryEntry


def append(order, status: str, remarks: str = "", actor_id=None, payment_status: str | None = None) -> StatusHistoryEntry:
    return StatusHistoryEntry.objects.create(
        order=order,
        status=status,
        payment_status=payment_status or order.payment_status,
        remarks=remarks[:500],
        actor_id=None if actor_id is None else str(actor_id),
    )


def read(order) -> list[StatusHistoryEntry]:
    """Return the timeline newest-first."""
    return list(StatusHistoryEntry.objects.filter(order=order).order_by("-created_at", "-pk"))
