import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

logger = logging.getLogger(__name__)


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", True)


def send_payment_confirmation(*, order) -> None:
    """Email the customer a receipt for a confirmed order.

    Runs after commit; a failure here is logged and never affects payment state.
    """
    email = getattr(order.user, "email", "") or ""
    if not email:
        return
    try:
        context = {
            "order_number": order.order_number,
            "amount": order.total_amount,
            "currency": settings.PAYMENT_GATEWAY.get("CURRENCY", "INR"),
            "payment_id": order.gateway_payment_id,
            "shipping_address": order.shipping_address,
            "estimated_delivery": order.estimated_delivery,
            "lines": list(order.lines.select_related("offer")),
        }
        from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None) or getattr(settings, "EMAIL_HOST_USER", None)
        subject = f"Payment received for order {order.order_number} ({context['currency']} {order.total_amount})"
        text = render_to_string("emails/payment_receipt.txt", context)
        html = render_to_string("emails/payment_receipt.html", context)
        msg = EmailMultiAlternatives(subject, text, from_email, [email])
        msg.attach_alternative(html, "text/html")
        msg.send(fail_silently=_fail_silently())
    except Exception:
        logger.exception("Failed to send payment receipt for order %s", order.order_number)
