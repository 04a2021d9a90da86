from django.contrib import admin

from .models import Order, OrderLine, StatusHistoryEntry


class OrderLineInline(admin.TabularInline):
    model = OrderLine
    extra = 0
    can_delete = False
    readonly_fields = ("offer", "quantity", "price", "total")


class StatusHistoryInline(admin.TabularInline):
    model = StatusHistoryEntry
    extra = 0
    can_delete = False
    readonly_fields = ("status", "payment_status", "remarks", "actor_id", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "user", "status", "payment_status", "total_amount", "created_at")
    search_fields = ("order_number", "payment_intent_id", "gateway_payment_id", "user__username")
    list_filter = ("status", "payment_status", "created_at")
    # status changes go through orders.state_machine, never the admin form
    readonly_fields = (
        "order_number", "user", "total_amount", "status", "payment_status", "payment_intent_id",
        "gateway_payment_id", "estimated_delivery", "created_at", "updated_at",
    )
    inlines = (OrderLineInline, StatusHistoryInline)

    def has_delete_permission(self, request, obj=None):
        return False
