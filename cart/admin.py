from django.contrib import admin

from .models import CartItem


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ("user", "offer", "quantity", "created_at")
    search_fields = ("user__username",)
    raw_id_fields = ("user", "offer")
