from django.contrib import admin

from .models import Offer


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ("id", "product_name", "seller_id", "price", "stock_quantity", "is_active", "updated_at")
    search_fields = ("product_id", "product_name", "seller_id")
    list_filter = ("is_active",)
    readonly_fields = ("created_at", "updated_at")
