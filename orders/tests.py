import datetime
import json
import threading
import unittest
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings

from cart.models import CartItem
from catalog.models import Offer
from marketplace.auth import RequestContext
from marketplace.errors import ConflictError, EmptyCart, InsufficientStock, InvalidTransition, NotFoundError, ValidationError

from . import ledger, services, state_machine
from .filters import OrderByIntent, OrderById, OrderByStatus, OrderOwnedBy, find_orders
from .models import Order, OrderLine, OrderStatus, PaymentStatus, StatusHistoryEntry
from .utils import estimate_delivery, generate_order_number

User = get_user_model()


def make_offer(price="100.00", stock=5, active=True, name="Tulsi Mala"):
    return Offer.objects.create(
        product_id="P1", product_name=name, seller_id="S1",
        price=Decimal(price), stock_quantity=stock, is_active=active,
    )


def item(offer, quantity):
    return {"offerId": str(offer.pk), "quantity": quantity}


class CheckoutTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("alice", "alice@example.com", "pw")
        self.ctx = RequestContext(user_id=self.user.pk, actor_id=str(self.user.pk))

    def _checkout(self, items=None, **kwargs):
        params = {"shipping_address": "12 Temple Road", "pincode": "273001", "payment_method": "razorpay"}
        params.update(kwargs)
        return services.checkout(self.ctx, items=items, **params)

    def test_cart_checkout_creates_order_and_clears_cart(self):
        offer = make_offer(price="100.00", stock=5)
        CartItem.objects.create(user=self.user, offer=offer, quantity=2)

        result = self._checkout()

        self.assertEqual(result["totalAmount"], Decimal("200.00"))
        self.assertEqual(result["paymentMethod"], "razorpay")
        order = Order.objects.get(pk=result["orderId"])
        self.assertEqual(order.order_number, result["orderNumber"])
        self.assertEqual((order.status, order.payment_status), (OrderStatus.PENDING, PaymentStatus.PENDING))
        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 3)
        self.assertFalse(CartItem.objects.filter(user=self.user).exists())
        self.assertEqual([(e.status, e.remarks) for e in ledger.read(order)], [("PENDING", "Order created")])

    def test_zero_quantity_cart_rows_are_skipped(self):
        kept = make_offer(price="100.00", stock=5)
        empty = make_offer(price="40.00", stock=5, name="Incense")
        CartItem.objects.create(user=self.user, offer=kept, quantity=1)
        CartItem.objects.create(user=self.user, offer=empty, quantity=0)

        result = self._checkout()

        self.assertEqual(result["totalAmount"], Decimal("100.00"))
        lines = OrderLine.objects.filter(order_id=result["orderId"])
        self.assertEqual([(line.offer_id, line.quantity) for line in lines], [(kept.pk, 1)])
        empty.refresh_from_db()
        self.assertEqual(empty.stock_quantity, 5)

    def test_cart_with_only_zero_quantities_is_empty(self):
        CartItem.objects.create(user=self.user, offer=make_offer(), quantity=0)
        with self.assertRaises(EmptyCart):
            self._checkout()
        self.assertFalse(Order.objects.exists())

    def test_total_is_sum_of_line_totals_at_checkout_prices(self):
        a = make_offer(price="19.99", stock=10)
        b = make_offer(price="5.50", stock=10)

        result = self._checkout(items=[item(a, 3), item(b, 2)])

        # later price changes do not touch the snapshot
        Offer.objects.filter(pk=a.pk).update(price=Decimal("99.00"))
        lines = list(OrderLine.objects.filter(order_id=result["orderId"]))
        self.assertEqual(len(lines), 2)
        for line in lines:
            self.assertEqual(line.total, line.price * line.quantity)
        self.assertEqual(sorted(line.price for line in lines), [Decimal("5.50"), Decimal("19.99")])
        self.assertEqual(result["totalAmount"], sum(line.total for line in lines))
        self.assertEqual(result["totalAmount"], Decimal("70.97"))

    def test_explicit_items_leave_cart_alone(self):
        offer = make_offer(stock=5)
        other = make_offer(stock=5)
        CartItem.objects.create(user=self.user, offer=other, quantity=1)

        self._checkout(items=[item(offer, 1)])

        self.assertTrue(CartItem.objects.filter(user=self.user, offer=other).exists())
        other.refresh_from_db()
        self.assertEqual(other.stock_quantity, 5)

    def test_repeated_offer_in_items_is_merged(self):
        offer = make_offer(stock=5)
        result = self._checkout(items=[item(offer, 1), item(offer, 2)])
        line = OrderLine.objects.get(order_id=result["orderId"])
        self.assertEqual(line.quantity, 3)

    def test_empty_cart_and_no_items(self):
        with self.assertRaises(EmptyCart):
            self._checkout(items=[])
        self.assertFalse(Order.objects.exists())

    def test_quantity_equal_to_stock_succeeds(self):
        offer = make_offer(stock=4)
        self._checkout(items=[item(offer, 4)])
        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 0)

    def test_quantity_above_stock_fails_without_side_effects(self):
        offer = make_offer(stock=4)
        with self.assertRaises(ConflictError) as cm:
            self._checkout(items=[item(offer, 5)])
        self.assertIsInstance(cm.exception, InsufficientStock)
        self.assertEqual(cm.exception.offer_id, offer.pk)
        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 4)
        self.assertFalse(Order.objects.exists())

    def test_inactive_offer_is_rejected(self):
        offer = make_offer(stock=5, active=False)
        with self.assertRaises(InsufficientStock):
            self._checkout(items=[item(offer, 1)])

    def test_unknown_offer_is_rejected(self):
        with self.assertRaises(InsufficientStock):
            self._checkout(items=[{"offerId": "00000000-0000-0000-0000-000000000001", "quantity": 1}])

    def test_first_bad_line_aborts_whole_checkout(self):
        good = make_offer(stock=5)
        short = make_offer(stock=1)
        CartItem.objects.create(user=self.user, offer=good, quantity=2)
        CartItem.objects.create(user=self.user, offer=short, quantity=2)

        with self.assertRaises(InsufficientStock) as cm:
            self._checkout()
        self.assertEqual(cm.exception.offer_id, short.pk)
        good.refresh_from_db()
        self.assertEqual(good.stock_quantity, 5)
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 2)

    def test_second_checkout_for_same_stock_conflicts(self):
        offer = make_offer(stock=5)
        self._checkout(items=[item(offer, 3)])
        with self.assertRaises(ConflictError):
            self._checkout(items=[item(offer, 3)])
        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 2)
        self.assertEqual(Order.objects.count(), 1)

    def test_losing_the_stock_race_rolls_back_everything(self):
        offer = make_offer(stock=5)
        stale = {offer.pk: Offer.objects.get(pk=offer.pk)}
        self._checkout(items=[item(offer, 3)])

        # second buyer validated against a snapshot read before the first committed
        with patch("orders.services.catalog_stores.get_offers", return_value=stale):
            with self.assertLogs("orders.services", level="WARNING"):
                with self.assertRaises(InsufficientStock):
                    self._checkout(items=[item(offer, 3)])

        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 2)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderLine.objects.count(), 1)
        self.assertEqual(StatusHistoryEntry.objects.count(), 1)

    def test_failed_decrement_restores_earlier_lines_and_cart(self):
        first = make_offer(stock=5)
        second = make_offer(stock=1)
        CartItem.objects.create(user=self.user, offer=first, quantity=2)
        CartItem.objects.create(user=self.user, offer=second, quantity=3)
        stale_second = Offer.objects.get(pk=second.pk)
        stale_second.stock_quantity = 10

        with patch(
            "orders.services.catalog_stores.get_offers",
            return_value={first.pk: Offer.objects.get(pk=first.pk), second.pk: stale_second},
        ):
            with self.assertRaises(InsufficientStock):
                self._checkout()

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual((first.stock_quantity, second.stock_quantity), (5, 1))
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 2)
        self.assertFalse(Order.objects.exists())

    def test_order_number_collision_draws_a_new_number(self):
        offer = make_offer(stock=5)
        taken = self._checkout(items=[item(offer, 1)])["orderNumber"]

        with patch("orders.services.generate_order_number", side_effect=[taken, "ORD-FRESH-00001"]):
            result = self._checkout(items=[item(offer, 1)])

        self.assertEqual(result["orderNumber"], "ORD-FRESH-00001")
        self.assertEqual(Order.objects.filter(order_number=taken).count(), 1)

    @override_settings(ORDER_NUMBER_MAX_ATTEMPTS=2)
    def test_order_number_exhaustion_keeps_stock(self):
        offer = make_offer(stock=5)
        taken = self._checkout(items=[item(offer, 1)])["orderNumber"]

        with patch("orders.services.generate_order_number", return_value=taken):
            with self.assertRaises(ConflictError):
                self._checkout(items=[item(offer, 1)])

        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 4)
        self.assertEqual(Order.objects.count(), 1)

    def test_input_validation(self):
        offer = make_offer()
        with self.assertRaises(ValidationError):
            self._checkout(items=[item(offer, 1)], shipping_address="  ")
        with self.assertRaises(ValidationError):
            self._checkout(items=[item(offer, 1)], payment_method="bitcoin")
        with self.assertRaises(ValidationError):
            self._checkout(items=[item(offer, 0)])
        with self.assertRaises(ValidationError):
            self._checkout(items=[{"offerId": "not-a-uuid", "quantity": 1}])
        with self.assertRaises(ValidationError):
            self._checkout(items=[{"offerId": str(offer.pk), "quantity": True}])

    def test_estimated_delivery_is_persisted(self):
        offer = make_offer()
        result = self._checkout(items=[item(offer, 1)], pincode="273001")
        order = Order.objects.get(pk=result["orderId"])
        first = services.get_order_detail(self.ctx, order.pk)["estimatedDelivery"]
        second = services.get_order_detail(self.ctx, order.pk)["estimatedDelivery"]
        self.assertEqual(first, second)
        self.assertEqual(first, order.estimated_delivery)


@unittest.skipUnless(connection.vendor == "postgresql", "needs row-level locking across connections")
class ConcurrentCheckoutTests(TransactionTestCase):
    def test_two_buyers_race_for_the_same_units(self):
        offer = make_offer(stock=5)
        users = [User.objects.create_user(f"buyer{i}", password="pw") for i in range(2)]
        barrier = threading.Barrier(2)
        outcomes = []

        def buy(user):
            try:
                barrier.wait()
                services.checkout(
                    RequestContext(user_id=user.pk), "addr", "273001", "razorpay", items=[item(offer, 3)],
                )
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")
            finally:
                connection.close()

        threads = [threading.Thread(target=buy, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["conflict", "ok"])
        offer.refresh_from_db()
        self.assertEqual(offer.stock_quantity, 2)


class StateMachineTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("bob", password="pw")
        self.order = Order.objects.create(
            user=self.user, order_number="ORD-T-1", total_amount=Decimal("10.00"),
            shipping_address="addr", pincode="1", payment_method="razorpay",
            estimated_delivery=datetime.date(2024, 1, 5),
        )

    def test_payment_success_path(self):
        state_machine.transition(
            self.order, status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID, remarks="paid",
        )
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("CONFIRMED", "PAID"))
        entries = ledger.read(self.order)
        self.assertEqual(len(entries), 1)
        self.assertEqual((entries[0].status, entries[0].payment_status), ("CONFIRMED", "PAID"))

    def test_fulfilment_chain(self):
        state_machine.transition(self.order, status="CONFIRMED", payment_status="PAID")
        state_machine.transition(self.order, status="SHIPPED")
        state_machine.transition(self.order, status="DELIVERED", actor_id=7)
        self.assertEqual([e.status for e in ledger.read(self.order)], ["DELIVERED", "SHIPPED", "CONFIRMED"])
        self.assertEqual(ledger.read(self.order)[0].actor_id, "7")

    def test_terminal_states_have_no_exit(self):
        state_machine.transition(self.order, status="CANCELLED")
        with self.assertRaises(InvalidTransition) as cm:
            state_machine.transition(self.order, status="CONFIRMED")
        self.assertEqual((cm.exception.current, cm.exception.requested), ("CANCELLED", "CONFIRMED"))

    def test_illegal_jumps_are_rejected_without_ledger_entry(self):
        for kwargs in ({"status": "SHIPPED"}, {"status": "DELIVERED"}, {"payment_status": "REFUNDED"}, {"status": "BOGUS"}):
            with self.subTest(**kwargs), self.assertRaises(InvalidTransition):
                state_machine.transition(self.order, **kwargs)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("PENDING", "PENDING"))
        self.assertEqual(ledger.read(self.order), [])

    def test_no_op_is_not_a_transition(self):
        with self.assertRaises(InvalidTransition):
            state_machine.transition(self.order, status="PENDING", payment_status="PENDING")

    def test_failed_payment_can_reopen_or_be_paid(self):
        state_machine.transition(self.order, payment_status="FAILED")
        state_machine.transition(self.order, payment_status="PENDING")
        state_machine.transition(self.order, payment_status="FAILED")
        state_machine.transition(self.order, status="CONFIRMED", payment_status="PAID")
        self.assertEqual(len(ledger.read(self.order)), 4)

    def test_ledger_entries_are_append_only(self):
        entry = ledger.append(self.order, "PENDING", "Order created")
        entry.remarks = "rewritten"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()


class FilterAndUtilTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("carol", password="pw")
        self.other = User.objects.create_user("dave", password="pw")
        common = dict(total_amount=Decimal("1.00"), shipping_address="a", pincode="1", payment_method="razorpay",
                      estimated_delivery=datetime.date(2024, 1, 5))
        self.mine = Order.objects.create(user=self.user, order_number="ORD-F-1", payment_intent_id="order_1", **common)
        self.theirs = Order.objects.create(user=self.other, order_number="ORD-F-2", **common)

    def test_filters(self):
        self.assertEqual(list(find_orders(OrderOwnedBy(self.user.pk))), [self.mine])
        self.assertFalse(find_orders(OrderOwnedBy(self.user.pk, self.theirs.pk)).exists())
        self.assertEqual(find_orders(OrderById(self.theirs.pk)).get(), self.theirs)
        self.assertEqual(find_orders(OrderByIntent("order_1")).get(), self.mine)
        self.assertFalse(find_orders(OrderByIntent("")).exists())
        self.assertEqual(list(find_orders(OrderByStatus(("PENDING",), with_intent=True))), [self.mine])

    def test_order_number_format(self):
        number = generate_order_number()
        prefix, ts, rand = number.split("-")
        self.assertEqual(prefix, "ORD")
        self.assertEqual(len(ts), 14)
        self.assertEqual(len(rand), 5)

    def test_estimate_delivery_is_deterministic(self):
        created = datetime.datetime(2024, 1, 1, 6, tzinfo=datetime.timezone.utc)
        self.assertEqual(estimate_delivery(created, "273001"), datetime.date(2024, 1, 5))
        self.assertEqual(estimate_delivery(created, "273003"), datetime.date(2024, 1, 7))
        self.assertEqual(estimate_delivery(created, "N/A"), datetime.date(2024, 1, 4))


class OrderApiTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("erin", "erin@example.com", "pw")
        self.client.force_login(self.user)
        self.offer = make_offer(price="100.00", stock=5)

    def _post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def _checkout(self, **payload):
        body = {"shippingAddress": "12 Temple Road", "pincode": "273001", "paymentMethod": "razorpay"}
        body.update(payload)
        return self._post("/checkout", body)

    def test_checkout_endpoint(self):
        CartItem.objects.create(user=self.user, offer=self.offer, quantity=2)
        resp = self._checkout()
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["totalAmount"], "200.00")
        self.assertIn("orderNumber", data)
        self.assertIn("message", data)

    def test_checkout_errors_are_typed(self):
        resp = self._checkout()
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "validation_error")

        resp = self._checkout(items=[item(self.offer, 6)])
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"], "conflict")

    def test_checkout_requires_login(self):
        self.client.logout()
        resp = self._checkout()
        self.assertEqual(resp.status_code, 401)

    def test_order_list_detail_and_tracking(self):
        order_id = self._checkout(items=[item(self.offer, 1)]).json()["orderId"]

        listing = self.client.get("/orders").json()
        self.assertEqual(listing["pagination"]["total"], 1)
        self.assertEqual(listing["orders"][0]["itemCount"], 1)

        detail = self.client.get(f"/orders/{order_id}").json()
        self.assertEqual(detail["items"][0]["quantity"], 1)
        self.assertEqual(detail["statusHistory"][0]["remarks"], "Order created")

        tracking = self.client.get(f"/orders/{order_id}/tracking").json()
        self.assertEqual(tracking["currentStatus"]["status"], "Order Placed")
        self.assertEqual(len(tracking["trackingUpdates"]), 1)

    def test_other_users_order_is_not_found(self):
        order_id = self._checkout(items=[item(self.offer, 1)]).json()["orderId"]
        self.client.force_login(User.objects.create_user("mallory", password="pw"))
        self.assertEqual(self.client.get(f"/orders/{order_id}").status_code, 404)
        with self.assertRaises(NotFoundError):
            services.get_order_detail(RequestContext(user_id=-1), order_id)

    def test_cart_summary(self):
        CartItem.objects.create(user=self.user, offer=self.offer, quantity=3)
        data = self.client.get("/cart/summary").json()
        self.assertEqual(data["totalAmount"], "300.00")
        self.assertEqual(data["totalItems"], 3)

    def test_operator_status_update(self):
        order_id = self._checkout(items=[item(self.offer, 1)]).json()["orderId"]

        resp = self._post(f"/orders/{order_id}/status", {"status": "SHIPPED"})
        self.assertEqual(resp.status_code, 403)

        staff = User.objects.create_user("ops", password="pw", is_staff=True)
        self.client.force_login(staff)
        resp = self._post(f"/orders/{order_id}/status", {"status": "SHIPPED"})
        self.assertEqual(resp.status_code, 409)
        self.assertIn("PENDING", resp.json()["message"])

        resp = self._post(f"/orders/{order_id}/status", {"status": "CANCELLED", "remarks": "Customer called"})
        self.assertEqual(resp.status_code, 200)
        entry = ledger.read(Order.objects.get(pk=order_id))[0]
        self.assertEqual((entry.status, entry.remarks, entry.actor_id), ("CANCELLED", "Customer called", str(staff.pk)))

        resp = self._post(f"/orders/{order_id}/status", {"status": "shipped-ish"})
        self.assertEqual(resp.status_code, 400)

    def test_operator_cannot_confirm_or_fulfil_unpaid_order(self):
        order_id = self._checkout(items=[item(self.offer, 1)]).json()["orderId"]
        staff = User.objects.create_user("ops", password="pw", is_staff=True)
        self.client.force_login(staff)

        for status in ("CONFIRMED", "SHIPPED", "DELIVERED"):
            resp = self._post(f"/orders/{order_id}/status", {"status": status})
            self.assertEqual(resp.status_code, 409, status)
        order = Order.objects.get(pk=order_id)
        self.assertEqual((order.status, order.payment_status), (OrderStatus.PENDING, PaymentStatus.PENDING))
        self.assertEqual(len(ledger.read(order)), 1)

        # confirmed without a payment still cannot ship
        state_machine.transition(order, status=OrderStatus.CONFIRMED)
        staff_ctx = RequestContext(user_id=staff.pk, actor_id=str(staff.pk))
        with self.assertRaises(ConflictError):
            services.update_status(staff_ctx, order_id, "SHIPPED")

        state_machine.transition(order, payment_status=PaymentStatus.PAID, remarks="Payment successful via gateway")
        for status in ("SHIPPED", "DELIVERED"):
            resp = self._post(f"/orders/{order_id}/status", {"status": status})
            self.assertEqual(resp.status_code, 200, status)
        order.refresh_from_db()
        self.assertEqual((order.status, order.payment_status), (OrderStatus.DELIVERED, PaymentStatus.PAID))
