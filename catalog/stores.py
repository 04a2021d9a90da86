from django.db.models import F

from .models import Offer


def get_offers(offer_ids) -> dict:
    return {o.pk: o for o in Offer.objects.filter(pk__in=list(offer_ids))}


def conditional_decrement(offer_id, quantity: int) -> bool:
    """Take ``quantity`` units iff the offer is active and still has them.

    Availability is checked by the UPDATE itself, so two concurrent callers
    can never both succeed against the same units.
    """
    updated = Offer.objects.filter(
        pk=offer_id, is_active=True, stock_quantity__gte=quantity
    ).update(stock_quantity=F("stock_quantity") - quantity)
    return updated == 1
