from django.urls import path

from . import views

app_name = "orders"
urlpatterns = [
    path("checkout", views.checkout_view, name="checkout"),
    path("cart/summary", views.cart_summary_view, name="cart_summary"),
    path("orders", views.order_list_view, name="order_list"),
    path("orders/<uuid:order_id>", views.order_detail_view, name="order_detail"),
    path("orders/<uuid:order_id>/tracking", views.order_tracking_view, name="order_tracking"),
    path("orders/<uuid:order_id>/status", views.order_status_view, name="order_status"),
]
