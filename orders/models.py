import uuid

from django.conf import settings
from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    SHIPPED = "SHIPPED", "Shipped"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")
    order_number = models.CharField(max_length=32, unique=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_address = models.TextField()
    pincode = models.CharField(max_length=12)
    payment_method = models.CharField(max_length=32)

    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    payment_intent_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, default="")

    estimated_delivery = models.DateField()

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.order_number} ({self.status}/{self.payment_status})"


class OrderLine(models.Model):
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="lines")
    offer = models.ForeignKey("catalog.Offer", on_delete=models.PROTECT, related_name="order_lines")
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)  # snapshot at checkout
    total = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ("pk",)

    def __str__(self):
        return f"{self.order_id}: {self.quantity} x {self.offer_id}"


class StatusHistoryEntry(models.Model):
    """One row of an order's append-only lifecycle timeline."""

    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="status_history")
    status = models.CharField(max_length=16, choices=OrderStatus.choices)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices)
    remarks = models.CharField(max_length=500, blank=True, default="")
    actor_id = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ("-created_at", "-pk")
        verbose_name_plural = "status history entries"

    def __str__(self):
        return f"{self.order_id} {self.status}: {self.remarks}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Status history entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Status history entries are append-only")
