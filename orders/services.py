import datetime
import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from cart import stores as cart_stores
from catalog import stores as catalog_stores
from marketplace.auth import RequestContext
from marketplace.errors import ConflictError, EmptyCart, InsufficientStock, NotFoundError, ValidationError

from . import ledger, state_machine
from .filters import OrderById, OrderOwnedBy, find_orders
from .models import Order, OrderLine, OrderStatus, PaymentStatus
from .utils import estimate_delivery, generate_order_number, money

logger = logging.getLogger(__name__)

FULFILMENT_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


def _required(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def _parse_offer_id(raw) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid offer id: {raw}")


def _parse_quantity(raw) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise ValidationError("quantity must be a positive integer")
    return raw


def _parse_items(items) -> list[tuple[uuid.UUID, int]]:
    """Normalise an explicit item list, merging repeated offers."""
    if not items:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    merged: dict[uuid.UUID, int] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item needs offerId and quantity")
        offer_id = _parse_offer_id(item.get("offerId", item.get("offer_id")))
        merged[offer_id] = merged.get(offer_id, 0) + _parse_quantity(item.get("quantity"))
    return list(merged.items())


def _create_order(ctx: RequestContext, total, shipping_address, pincode, payment_method) -> Order:
    """Insert the order row, drawing a fresh order number on collisions."""
    now = timezone.now()
    attempts = getattr(settings, "ORDER_NUMBER_MAX_ATTEMPTS", 5)
    for _ in range(attempts):
        number = generate_order_number()
        try:
            with transaction.atomic():
                return Order.objects.create(
                    user_id=ctx.user_id,
                    order_number=number,
                    total_amount=total,
                    shipping_address=shipping_address,
                    pincode=pincode,
                    payment_method=payment_method,
                    status=OrderStatus.PENDING,
                    estimated_delivery=estimate_delivery(now, pincode),
                )
        except IntegrityError:
            logger.warning("Order number %s already taken, drawing another", number)
    raise ConflictError("Could not allocate an order number, please retry")


def checkout(ctx: RequestContext, shipping_address, pincode, payment_method, items=None) -> dict:
    """Turn the explicit items (or the customer's cart) into a PENDING order.

    Stock is checked up front so the caller gets a precise error, and again
    by the conditional decrement inside the transaction, which is the check
    that actually prevents overselling.  Order, lines, decrements, cart
    clearing and the first ledger entry commit together or not at all.
    """
    shipping_address = _required(shipping_address, "shippingAddress")
    pincode = _required(pincode, "pincode")
    payment_method = _required(payment_method, "paymentMethod")
    if payment_method not in settings.CHECKOUT_PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {payment_method}")

    requested = _parse_items(items)
    from_cart = not requested
    if from_cart:
        # zero-quantity rows are leftovers, not purchases
        requested = [
            (row["offer_id"], row["quantity"])
            for row in cart_stores.read_all(ctx.user_id)
            if row["quantity"] > 0
        ]
    if not requested:
        raise EmptyCart()

    offers = catalog_stores.get_offers(offer_id for offer_id, _ in requested)
    lines = []
    for offer_id, quantity in requested:
        offer = offers.get(offer_id)
        if offer is None or not offer.is_active or offer.stock_quantity < quantity:
            raise InsufficientStock(offer_id)
        lines.append((offer, quantity, offer.price, money(offer.price * quantity)))

    total = sum((line_total for _, _, _, line_total in lines), Decimal("0.00"))

    with transaction.atomic():
        order = _create_order(ctx, total, shipping_address, pincode, payment_method)
        OrderLine.objects.bulk_create([
            OrderLine(order=order, offer=offer, quantity=quantity, price=price, total=line_total)
            for offer, quantity, price, line_total in lines
        ])
        for offer, quantity, _, _ in lines:
            if not catalog_stores.conditional_decrement(offer.pk, quantity):
                logger.warning("Stock race lost on offer %s for order %s", offer.pk, order.order_number)
                raise InsufficientStock(offer.pk)
        if from_cart:
            cart_stores.clear(ctx.user_id)
        ledger.append(order, OrderStatus.PENDING, "Order created", actor_id=ctx.actor_id)

    logger.info("Order %s created for user %s: total=%s lines=%d", order.order_number, ctx.user_id, total, len(lines))
    return {
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "totalAmount": order.total_amount,
        "paymentMethod": payment_method,
        "message": "Order created successfully. Proceed to payment.",
    }


def get_owned_order(ctx: RequestContext, order_id, *, for_update=False) -> Order:
    qs = Order.objects.select_for_update() if for_update else Order.objects.all()
    order = find_orders(OrderOwnedBy(ctx.user_id, order_id), qs).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _entry_dict(entry) -> dict:
    return {
        "status": entry.status,
        "paymentStatus": entry.payment_status,
        "remarks": entry.remarks,
        "actorId": entry.actor_id,
        "createdAt": entry.created_at,
    }


def list_orders(ctx: RequestContext, page: int = 1) -> dict:
    page_size = getattr(settings, "ORDERS_PAGE_SIZE", 10)
    page = max(page, 1)
    qs = find_orders(OrderOwnedBy(ctx.user_id)).order_by("-created_at")
    total = qs.count()
    start = (page - 1) * page_size
    orders = qs.prefetch_related("lines")[start:start + page_size]
    return {
        "orders": [
            {
                "id": o.pk,
                "orderNumber": o.order_number,
                "totalAmount": o.total_amount,
                "status": o.status,
                "paymentStatus": o.payment_status,
                "createdAt": o.created_at,
                "itemCount": len(o.lines.all()),
            }
            for o in orders
        ],
        "pagination": {
            "page": page,
            "limit": page_size,
            "total": total,
            "pages": (total + page_size - 1) // page_size,
        },
    }


def get_order_detail(ctx: RequestContext, order_id) -> dict:
    order = get_owned_order(ctx, order_id)
    lines = order.lines.select_related("offer")
    return {
        "id": order.pk,
        "orderNumber": order.order_number,
        "totalAmount": order.total_amount,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "shippingAddress": order.shipping_address,
        "pincode": order.pincode,
        "createdAt": order.created_at,
        "estimatedDelivery": order.estimated_delivery,
        "items": [
            {
                "id": line.pk,
                "offerId": line.offer_id,
                "product": {"id": line.offer.product_id, "name": line.offer.product_name},
                "seller": {"id": line.offer.seller_id},
                "quantity": line.quantity,
                "price": line.price,
                "total": line.total,
            }
            for line in lines
        ],
        "statusHistory": [_entry_dict(e) for e in ledger.read(order)],
    }


def cart_summary(ctx: RequestContext) -> dict:
    total_amount = Decimal("0.00")
    total_items = 0
    items = []
    for row in cart_stores.read_with_offers(ctx.user_id):
        line_total = money(row.offer.price * row.quantity)
        total_amount += line_total
        total_items += row.quantity
        items.append({
            "offerId": row.offer_id,
            "product": {"id": row.offer.product_id, "name": row.offer.product_name},
            "seller": {"id": row.offer.seller_id},
            "price": row.offer.price,
            "quantity": row.quantity,
            "total": line_total,
        })
    return {"items": items, "totalAmount": total_amount, "totalItems": total_items}


TRACKING_LABELS = {
    OrderStatus.PENDING: ("Order Placed", "Your order has been placed"),
    OrderStatus.CONFIRMED: ("Packed", "Your order has been packed"),
    OrderStatus.SHIPPED: ("In Transit", "Your order is on the way"),
    OrderStatus.DELIVERED: ("Delivered", "Your order has been delivered"),
    OrderStatus.CANCELLED: ("Cancelled", "Your order has been cancelled"),
}


def tracking(ctx: RequestContext, order_id) -> dict:
    """Mock delivery tracking derived only from status and creation time."""
    order = get_owned_order(ctx, order_id)
    day = datetime.timedelta(days=1)
    placed = order.created_at
    updates = [{"status": "Order Placed", "timestamp": placed, "location": "Order Processing Center"}]
    if order.status in (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        updates.append({"status": "Order Confirmed", "timestamp": placed + day, "location": "Warehouse"})
    if order.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        updates.append({"status": "Shipped", "timestamp": placed + 2 * day, "location": "Distribution Center"})
    if order.status == OrderStatus.DELIVERED:
        updates.append({
            "status": "Out for Delivery",
            "timestamp": placed + 3 * day,
            "location": f"Local Delivery Center - {order.pincode}",
        })
        updates.append({"status": "Delivered", "timestamp": placed + 4 * day, "location": f"Delivered to {order.pincode}"})

    label, message = TRACKING_LABELS.get(order.status, ("Processing", "Order is being processed"))
    return {
        "orderId": order.pk,
        "orderNumber": order.order_number,
        "currentStatus": {"status": label, "message": message},
        "estimatedDelivery": order.estimated_delivery,
        "trackingUpdates": updates,
    }


def update_status(ctx: RequestContext, order_id, status, remarks=None) -> dict:
    """Operator-driven fulfilment step (ship, deliver, cancel).

    Confirmation belongs to the payment flow, and fulfilment steps need a
    paid order.
    """
    if status not in OrderStatus.values:
        raise ValidationError(f"Unknown status: {status}")
    if status == OrderStatus.CONFIRMED:
        raise ConflictError("Orders are confirmed by a verified payment, not by operators")
    with transaction.atomic():
        order = find_orders(OrderById(order_id), Order.objects.select_for_update()).first()
        if order is None:
            raise NotFoundError("Order not found")
        if status in FULFILMENT_STATUSES and order.payment_status != PaymentStatus.PAID:
            raise ConflictError(f"Cannot mark order {status} while payment is {order.payment_status}")
        state_machine.transition(
            order,
            status=status,
            remarks=remarks or f"Status updated to {status}",
            actor_id=ctx.actor_id,
        )
    return {"id": order.pk, "orderNumber": order.order_number, "status": order.status, "paymentStatus": order.payment_status}
