from django.contrib import admin

from .models import Refund


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("gateway_refund_id", "order", "status", "amount", "currency", "created_at", "updated_at")
    search_fields = ("gateway_refund_id", "order__order_number")
    list_filter = ("status", "currency", "created_at")
    readonly_fields = ("created_at", "updated_at", "last_payload")
