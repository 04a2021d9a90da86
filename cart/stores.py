from .models import CartItem


def read_all(user_id) -> list[dict]:
    return [
        {"offer_id": offer_id, "quantity": quantity}
        for offer_id, quantity in CartItem.objects.filter(user_id=user_id)
        .order_by("created_at", "pk")
        .values_list("offer_id", "quantity")
    ]


def read_with_offers(user_id):
    return CartItem.objects.filter(user_id=user_id).select_related("offer").order_by("-created_at", "-pk")


def clear(user_id) -> int:
    deleted, _ = CartItem.objects.filter(user_id=user_id).delete()
    return deleted
