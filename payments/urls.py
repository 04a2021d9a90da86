from django.urls import path

from . import views

app_name = "payments"
urlpatterns = [
    path("order/<uuid:order_id>", views.create_order_payment_view, name="create_order_payment"),
    path("verify", views.verify_payment_view, name="verify"),
    path("failure", views.payment_failure_view, name="failure"),
    path("retry/<uuid:order_id>", views.retry_payment_view, name="retry"),
    path("refund/<uuid:order_id>", views.refund_view, name="refund"),
    path("status/<uuid:order_id>", views.payment_status_view, name="status"),
    path("webhook/refund", views.refund_webhook_view, name="refund_webhook"),
]
