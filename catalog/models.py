import uuid

from django.db import models


class Offer(models.Model):
    """A seller's price and stock listing for a product.

    Catalog maintenance lives elsewhere; checkout only reads offers and
    decrements ``stock_quantity`` through ``catalog.stores``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product_id = models.CharField(max_length=64, db_index=True)
    product_name = models.CharField(max_length=255, blank=True, default="")
    seller_id = models.CharField(max_length=64, db_index=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock_quantity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(stock_quantity__gte=0), name="offer_stock_non_negative"),
        ]

    def __str__(self):
        return f"{self.product_name or self.product_id} by {self.seller_id} @ {self.price}"
