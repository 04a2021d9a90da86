import time

from django.core.management.base import BaseCommand
from django.utils import timezone

from marketplace.errors import MarketplaceError
from orders.filters import OrderByStatus, find_orders
from orders.models import PaymentStatus
from payments.services import reconcile_order


class Command(BaseCommand):
    help = "Poll the gateway for captured payments on orders still awaiting confirmation"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=5)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timezone.timedelta(minutes=opts["older_than_minutes"])
        criteria = OrderByStatus(payment_statuses=(PaymentStatus.PENDING, PaymentStatus.FAILED), with_intent=True)
        qs = find_orders(criteria).filter(updated_at__lt=cutoff).order_by("updated_at")[:opts["max"]]

        checked = confirmed = 0
        for order in qs:
            checked += 1
            try:
                if reconcile_order(order):
                    confirmed += 1
                    self.stdout.write(self.style.SUCCESS(f"{order.order_number} -> PAID"))
                else:
                    self.stdout.write(f"{order.order_number}: no captured payment")
            except MarketplaceError as e:
                self.stdout.write(self.style.WARNING(f"{order.order_number}: {e.message}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])

        self.stdout.write(self.style.SUCCESS(f"Checked {checked}, confirmed {confirmed} orders."))
