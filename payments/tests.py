import hashlib
import hmac
import io
import json
from decimal import Decimal
from unittest.mock import patch

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase, override_settings
from requests.auth import HTTPBasicAuth

from cart.models import CartItem
from catalog.models import Offer
from marketplace.auth import RequestContext
from marketplace.errors import (
    AlreadyProcessed,
    ConflictError,
    GatewayUnavailable,
    InvalidTransition,
    NotFoundError,
    RefundNotEligible,
    SecurityError,
    ValidationError,
)
from orders import ledger, state_machine
from orders.models import Order, OrderStatus, PaymentStatus
from orders.services import checkout

from . import services
from .integrations import gateway
from .integrations.gateway import GatewayError
from .models import Refund, RefundStatus
from .utils import payment_signature, to_minor_units, verify_webhook_signature

User = get_user_model()

KEY_SECRET = b"test-key-secret"
WEBHOOK_SECRET = b"test-webhook-secret"


def sign(gateway_order_id, gateway_payment_id):
    msg = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(KEY_SECRET, msg, hashlib.sha256).hexdigest()


class PaymentFixtureMixin:
    """A customer with a 2 x 100.00 order placed from the cart."""

    def setUp(self):
        self.user = User.objects.create_user("alice", "alice@example.com", "pw")
        self.ctx = RequestContext(user_id=self.user.pk, actor_id=str(self.user.pk))
        self.offer = Offer.objects.create(
            product_id="P1", product_name="Tulsi Mala", seller_id="S1",
            price=Decimal("100.00"), stock_quantity=5,
        )
        CartItem.objects.create(user=self.user, offer=self.offer, quantity=2)
        result = checkout(self.ctx, "12 Temple Road", "273001", "razorpay")
        self.order = Order.objects.get(pk=result["orderId"])

    def open_intent(self, intent_id="order_ABC"):
        Order.objects.filter(pk=self.order.pk).update(payment_intent_id=intent_id)
        self.order.refresh_from_db()
        return intent_id

    def pay(self, payment_id="pay_1"):
        intent = self.order.payment_intent_id or self.open_intent()
        services.verify_payment(intent, payment_id, sign(intent, payment_id))
        self.order.refresh_from_db()


class UtilsTests(TestCase):
    def test_signature_matches_independent_hmac(self):
        self.assertEqual(payment_signature("order_1", "pay_1"), sign("order_1", "pay_1"))

    def test_webhook_signature(self):
        body = b'{"event": "refund.processed"}'
        good = hmac.new(WEBHOOK_SECRET, body, hashlib.sha256).hexdigest()
        self.assertTrue(verify_webhook_signature(body, good))
        self.assertFalse(verify_webhook_signature(body, "0" * 64))
        self.assertFalse(verify_webhook_signature(body, None))

    def test_minor_units_round_half_up(self):
        self.assertEqual(to_minor_units(Decimal("200.00")), 20000)
        self.assertEqual(to_minor_units("199.995"), 20000)
        self.assertEqual(to_minor_units("0.01"), 1)

    @override_settings(PAYMENT_GATEWAY={"KEY_SECRET": ""})
    def test_missing_secret_is_a_configuration_error(self):
        with self.assertLogs("payments.utils", level="ERROR"):
            with self.assertRaises(ImproperlyConfigured):
                payment_signature("order_1", "pay_1")


class CreateOrderPaymentTests(PaymentFixtureMixin, TestCase):
    def test_opens_intent_keyed_by_order_number(self):
        intent = {"id": "order_ABC", "amount": 20000, "currency": "INR", "receipt": self.order.order_number}
        with patch("payments.services.gateway.create_order", return_value=intent) as create:
            result = services.create_order_payment(self.ctx, self.order.pk)

        create.assert_called_once_with(amount=20000, currency="INR", receipt=self.order.order_number)
        self.assertEqual(result["gatewayOrderId"], "order_ABC")
        self.assertEqual((result["amount"], result["currency"], result["receipt"]), (20000, "INR", self.order.order_number))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_intent_id, "order_ABC")

    def test_existing_intent_is_reused(self):
        self.open_intent("order_FIRST")
        with patch("payments.services.gateway.create_order") as create:
            result = services.create_order_payment(self.ctx, self.order.pk)
        create.assert_not_called()
        self.assertEqual(result["gatewayOrderId"], "order_FIRST")

    def test_intent_id_is_set_only_once(self):
        def racing_create(**kwargs):
            # another request stores its intent while ours is in flight
            Order.objects.filter(pk=self.order.pk).update(payment_intent_id="order_WINNER")
            return {"id": "order_LOSER"}

        with patch("payments.services.gateway.create_order", side_effect=racing_create):
            result = services.create_order_payment(self.ctx, self.order.pk)

        self.assertEqual(result["gatewayOrderId"], "order_WINNER")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_intent_id, "order_WINNER")

    def test_gateway_failure_leaves_order_untouched(self):
        with patch("payments.services.gateway.create_order", side_effect=GatewayError("read timeout")):
            with self.assertLogs("payments.services", level="ERROR"):
                with self.assertRaises(GatewayUnavailable):
                    services.create_order_payment(self.ctx, self.order.pk)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_intent_id, "")
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)
        self.assertEqual(len(ledger.read(self.order)), 1)

    def test_not_owned_order_is_not_found(self):
        stranger = User.objects.create_user("mallory", password="pw")
        with self.assertRaises(NotFoundError):
            services.create_order_payment(RequestContext(user_id=stranger.pk), self.order.pk)

    def test_already_processed(self):
        self.pay()
        with self.assertRaises(AlreadyProcessed):
            services.create_order_payment(self.ctx, self.order.pk)


class VerifyPaymentTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.intent = self.open_intent("order_ABC")

    def test_valid_signature_confirms_order(self):
        result = services.verify_payment(self.intent, "pay_1", sign(self.intent, "pay_1"))

        self.assertTrue(result["success"])
        self.assertEqual(result["orderId"], self.order.pk)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), (OrderStatus.CONFIRMED, PaymentStatus.PAID))
        self.assertEqual(self.order.gateway_payment_id, "pay_1")
        entries = ledger.read(self.order)
        self.assertEqual(len(entries), 2)
        self.assertEqual((entries[0].status, entries[0].remarks), ("CONFIRMED", "Payment successful via gateway"))

    def test_tampered_signature_changes_nothing(self):
        bad = sign(self.intent, "pay_1")[:-2] + "00"
        with self.assertLogs("payments.services", level="WARNING") as cm:
            with self.assertRaises(SecurityError):
                services.verify_payment(self.intent, "pay_1", bad)
        self.assertIn("possible forgery", cm.output[0])
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), (OrderStatus.PENDING, PaymentStatus.PENDING))
        self.assertEqual(self.order.gateway_payment_id, "")
        self.assertEqual(len(ledger.read(self.order)), 1)

    def test_non_string_fields_are_validation_errors(self):
        for fields in ((self.intent, "pay_1", 12345), (self.intent, ["pay_1"], "sig"), ({"id": 1}, "pay_1", "sig")):
            with self.subTest(fields=fields), self.assertRaises(ValidationError):
                services.verify_payment(*fields)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_client_cannot_reuse_signature_for_another_payment(self):
        with self.assertRaises(SecurityError):
            services.verify_payment(self.intent, "pay_2", sign(self.intent, "pay_1"))

    def test_repeated_delivery_is_idempotent(self):
        sig = sign(self.intent, "pay_1")
        first = services.verify_payment(self.intent, "pay_1", sig)
        second = services.verify_payment(self.intent, "pay_1", sig)

        self.assertEqual(first, second)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)
        confirmations = [e for e in ledger.read(self.order) if e.remarks == "Payment successful via gateway"]
        self.assertEqual(len(confirmations), 1)

    def test_second_payment_for_paid_order_conflicts(self):
        services.verify_payment(self.intent, "pay_1", sign(self.intent, "pay_1"))
        with self.assertRaises(AlreadyProcessed):
            services.verify_payment(self.intent, "pay_2", sign(self.intent, "pay_2"))

    def test_unknown_intent_is_not_found(self):
        with self.assertRaises(NotFoundError):
            services.verify_payment("order_NOPE", "pay_1", sign("order_NOPE", "pay_1"))

    def test_missing_fields_are_rejected(self):
        with self.assertRaises(ValidationError):
            services.verify_payment(self.intent, "", "sig")

    def test_failed_payment_can_still_be_confirmed(self):
        services.handle_payment_failure(self.ctx, self.intent, "card declined")
        services.verify_payment(self.intent, "pay_2", sign(self.intent, "pay_2"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)

    def test_cancelled_order_is_not_confirmed(self):
        state_machine.transition(self.order, status=OrderStatus.CANCELLED, remarks="Customer cancelled")
        with self.assertLogs("payments.services", level="ERROR"):
            with self.assertRaises(InvalidTransition):
                services.verify_payment(self.intent, "pay_1", sign(self.intent, "pay_1"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.gateway_payment_id, "")

    def test_receipt_email_sent_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.verify_payment(self.intent, "pay_1", sign(self.intent, "pay_1"))
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.order.order_number, mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["alice@example.com"])


class FailureAndRetryTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.intent = self.open_intent("order_ABC")

    def test_failure_keeps_status_and_records_reason(self):
        result = services.handle_payment_failure(self.ctx, self.intent, "card declined")

        self.assertTrue(result["success"])
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), (OrderStatus.PENDING, PaymentStatus.FAILED))
        entry = ledger.read(self.order)[0]
        self.assertEqual((entry.payment_status, entry.remarks), ("FAILED", "Payment failed: card declined"))

    def test_repeated_failure_report_is_a_no_op(self):
        first = services.handle_payment_failure(None, self.intent, "card declined")
        second = services.handle_payment_failure(None, self.intent, "card declined")

        self.assertEqual(first, second)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.FAILED)
        failures = [e for e in ledger.read(self.order) if e.payment_status == "FAILED"]
        self.assertEqual(len(failures), 1)

    def test_failure_without_reason(self):
        services.handle_payment_failure(None, self.intent)
        self.assertEqual(ledger.read(self.order)[0].remarks, "Payment failed: Unknown reason")

    def test_failure_for_someone_elses_order(self):
        stranger = User.objects.create_user("mallory", password="pw")
        with self.assertRaises(NotFoundError):
            services.handle_payment_failure(RequestContext(user_id=stranger.pk), self.intent, "x")

    def test_failure_after_payment_is_rejected(self):
        self.pay()
        with self.assertRaises(InvalidTransition):
            services.handle_payment_failure(self.ctx, self.intent, "late failure")

    def test_retry_reopens_failed_payment(self):
        services.handle_payment_failure(self.ctx, self.intent, "card declined")
        result = services.retry_payment(self.ctx, self.order.pk)

        self.assertEqual(result["gatewayOrderId"], self.intent)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)
        self.assertEqual(ledger.read(self.order)[0].remarks, "Payment retry opened")

    def test_retry_requires_failed_payment(self):
        with self.assertRaises(ConflictError):
            services.retry_payment(self.ctx, self.order.pk)


class RefundTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.pay("pay_1")

    def _refund(self, amount=None, response=None):
        response = response or {"id": "rfnd_1", "status": "pending"}
        with patch("payments.services.gateway.create_refund", return_value=response) as create:
            result = services.refund_payment(self.ctx, self.order.pk, amount)
        return result, create

    def test_full_refund_by_default(self):
        result, create = self._refund()

        create.assert_called_once_with("pay_1", amount=20000, receipt=self.order.order_number)
        self.assertEqual(result["refundAmount"], Decimal("200.00"))
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), (OrderStatus.CANCELLED, PaymentStatus.REFUNDED))
        entry = ledger.read(self.order)[0]
        self.assertEqual(entry.status, "CANCELLED")
        self.assertIn("200.00", entry.remarks)
        refund = Refund.objects.get(order=self.order)
        self.assertEqual((refund.gateway_refund_id, refund.status, refund.amount), ("rfnd_1", RefundStatus.PENDING, Decimal("200.00")))

    def test_partial_refund(self):
        result, create = self._refund(amount="50")
        self.assertEqual(result["refundAmount"], Decimal("50.00"))
        create.assert_called_once_with("pay_1", amount=5000, receipt=self.order.order_number)

    def test_invalid_amounts(self):
        for amount in ("250.00", 0, -1, "abc", True):
            with self.subTest(amount=amount), self.assertRaises(ValidationError):
                self._refund(amount=amount)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)

    def test_refund_twice_is_not_eligible(self):
        self._refund()
        with self.assertRaises(RefundNotEligible):
            self._refund()
        self.assertEqual(Refund.objects.count(), 1)

    def test_unpaid_order_is_not_eligible(self):
        CartItem.objects.create(user=self.user, offer=self.offer, quantity=1)
        pending = checkout(self.ctx, "addr", "273001", "razorpay")
        with self.assertRaises(RefundNotEligible):
            services.refund_payment(self.ctx, pending["orderId"])

    def test_gateway_failure_changes_nothing(self):
        with patch("payments.services.gateway.create_refund", side_effect=GatewayError("HTTP 502")):
            with self.assertLogs("payments.services", level="ERROR"):
                with self.assertRaises(GatewayUnavailable):
                    services.refund_payment(self.ctx, self.order.pk)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)
        self.assertFalse(Refund.objects.exists())

    def test_local_write_failure_after_gateway_refund_is_logged(self):
        with patch.object(Refund.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertLogs("payments.services", level="INFO") as cm:
                with self.assertRaises(DatabaseError):
                    self._refund()
        output = "\n".join(cm.output)
        self.assertIn("Gateway accepted refund rfnd_1", output)
        self.assertIn("rfnd_1", [r for r in cm.output if "reconcile manually" in r][0])
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)

    def test_delivered_order_is_rejected_before_calling_gateway(self):
        state_machine.transition(self.order, status=OrderStatus.SHIPPED)
        state_machine.transition(self.order, status=OrderStatus.DELIVERED)
        with patch("payments.services.gateway.create_refund") as create:
            with self.assertRaises(InvalidTransition):
                services.refund_payment(self.ctx, self.order.pk)
        create.assert_not_called()

    def test_processed_status_from_gateway(self):
        result, _ = self._refund(response={"id": "rfnd_2", "status": "processed"})
        self.assertEqual(result["refundStatus"], RefundStatus.PROCESSED)

    def test_async_refund_confirmation(self):
        self._refund()
        services.handle_refund_update("rfnd_1", "processed", {"event": "refund.processed"})
        services.handle_refund_update("rfnd_1", "processed")
        refund = Refund.objects.get(gateway_refund_id="rfnd_1")
        self.assertEqual(refund.status, RefundStatus.PROCESSED)
        with self.assertRaises(ConflictError):
            services.handle_refund_update("rfnd_1", "failed")

    def test_async_refund_failure_is_logged(self):
        self._refund()
        with self.assertLogs("payments.services", level="ERROR"):
            services.handle_refund_update("rfnd_1", "failed")
        self.assertEqual(Refund.objects.get().status, RefundStatus.FAILED)

    def test_unknown_refund_update(self):
        with self.assertRaises(NotFoundError):
            services.handle_refund_update("rfnd_missing", "processed")
        with self.assertRaises(ValidationError):
            services.handle_refund_update("rfnd_1", "bogus")


class ReconcileTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.intent = self.open_intent("order_ABC")

    def test_captured_payment_is_confirmed(self):
        payments = [{"id": "pay_0", "status": "failed"}, {"id": "pay_9", "status": "captured"}]
        with patch("payments.services.gateway.fetch_order_payments", return_value=payments):
            self.assertTrue(services.reconcile_order(self.order))
        self.order.refresh_from_db()
        self.assertEqual((self.order.payment_status, self.order.gateway_payment_id), (PaymentStatus.PAID, "pay_9"))
        self.assertEqual(ledger.read(self.order)[0].remarks, "Payment reconciled with gateway")

    def test_nothing_captured(self):
        with patch("payments.services.gateway.fetch_order_payments", return_value=[]):
            self.assertFalse(services.reconcile_order(self.order))

    def test_management_command(self):
        out = io.StringIO()
        with patch("payments.services.gateway.fetch_order_payments", return_value=[{"id": "pay_9", "status": "captured"}]):
            call_command("reconcile_payments", "--sleep", "0", "--older-than-minutes", "0", stdout=out)
        self.assertIn("Checked 1, confirmed 1 orders.", out.getvalue())

    def test_management_command_survives_gateway_errors(self):
        out = io.StringIO()
        with patch("payments.services.gateway.fetch_order_payments", side_effect=GatewayError("down")):
            with self.assertLogs("payments.services", level="ERROR"):
                call_command("reconcile_payments", "--sleep", "0", "--older-than-minutes", "0", stdout=out)
        self.assertIn("Checked 1, confirmed 0 orders.", out.getvalue())


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class GatewayClientTests(TestCase):
    def test_create_order_posts_with_basic_auth_and_timeout(self):
        resp = FakeResponse(200, {"id": "order_1", "amount": 100, "currency": "INR"})
        with patch("payments.integrations.gateway.requests.request", return_value=resp) as req:
            data = gateway.create_order(amount=100, currency="INR", receipt="ORD-1")

        self.assertEqual(data["id"], "order_1")
        req.assert_called_once()
        args, kwargs = req.call_args
        self.assertEqual(args, ("POST", "https://gateway.test/v1/orders"))
        self.assertEqual(kwargs["json"], {"amount": 100, "currency": "INR", "receipt": "ORD-1", "payment_capture": 1})
        self.assertEqual(kwargs["auth"], HTTPBasicAuth("rzp_test_key", "test-key-secret"))
        self.assertEqual(kwargs["timeout"], 5)

    def test_error_response_raises(self):
        resp = FakeResponse(400, {"error": {"description": "amount too small"}})
        with patch("payments.integrations.gateway.requests.request", return_value=resp):
            with self.assertRaises(GatewayError) as cm:
                gateway.create_order(amount=1, currency="INR", receipt="ORD-1")
        self.assertEqual(cm.exception.status_code, 400)
        self.assertIn("amount too small", str(cm.exception))

    def test_server_error_without_json(self):
        with patch("payments.integrations.gateway.requests.request", return_value=FakeResponse(502, text="bad gateway")):
            with self.assertRaises(GatewayError) as cm:
                gateway.fetch_order_payments("order_1")
        self.assertEqual(cm.exception.status_code, 502)

    def test_timeout_raises(self):
        with patch("payments.integrations.gateway.requests.request", side_effect=requests.Timeout("slow")):
            with self.assertRaises(GatewayError):
                gateway.create_refund("pay_1", amount=100)

    def test_refund_and_payments_paths(self):
        with patch("payments.integrations.gateway.requests.request") as req:
            req.return_value = FakeResponse(200, {"id": "rfnd_1", "status": "pending"})
            gateway.create_refund("pay_1", amount=500, receipt="ORD-1")
            self.assertEqual(req.call_args.args, ("POST", "https://gateway.test/v1/payments/pay_1/refund"))
            self.assertEqual(req.call_args.kwargs["json"], {"amount": 500, "receipt": "ORD-1"})

            req.return_value = FakeResponse(200, {"items": [{"id": "pay_1", "status": "captured"}]})
            self.assertEqual(gateway.fetch_order_payments("order_1"), [{"id": "pay_1", "status": "captured"}])
            self.assertEqual(req.call_args.args, ("GET", "https://gateway.test/v1/orders/order_1/payments"))


class PaymentApiTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client.force_login(self.user)

    def _post(self, url, payload=None, **extra):
        return self.client.post(url, data=json.dumps(payload or {}), content_type="application/json", **extra)

    def test_happy_path(self):
        intent = {"id": "order_ABC", "amount": 20000, "currency": "INR", "receipt": self.order.order_number}
        with patch("payments.services.gateway.create_order", return_value=intent):
            resp = self._post(f"/payments/order/{self.order.pk}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["gatewayOrderId"], "order_ABC")

        # the gateway callback carries no session
        self.client.logout()
        body = {"gatewayOrderId": "order_ABC", "gatewayPaymentId": "pay_1", "signature": sign("order_ABC", "pay_1")}
        first = self._post("/payments/verify", body)
        second = self._post("/payments/verify", body)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), second.json())
        self.assertTrue(first.json()["success"])
        self.assertEqual(first.json()["orderId"], str(self.order.pk))

        self.client.force_login(self.user)
        status = self.client.get(f"/payments/status/{self.order.pk}").json()
        self.assertEqual(status["paymentStatus"], "PAID")
        self.assertEqual(status["paymentIntentId"], "order_ABC")
        self.assertEqual(status["totalAmount"], "200.00")

        with patch("payments.services.gateway.create_refund", return_value={"id": "rfnd_1", "status": "pending"}):
            resp = self._post(f"/payments/refund/{self.order.pk}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["refundAmount"], "200.00")

    def test_tampered_signature_is_forbidden(self):
        self.open_intent("order_ABC")
        body = {"gatewayOrderId": "order_ABC", "gatewayPaymentId": "pay_1", "signature": "deadbeef"}
        with self.assertLogs("payments.services", level="WARNING"):
            resp = self._post("/payments/verify", body)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["error"], "security_error")

    def test_malformed_verify_body_is_bad_request(self):
        self.open_intent("order_ABC")
        body = {"gatewayOrderId": "order_ABC", "gatewayPaymentId": "pay_1", "signature": 12345}
        resp = self._post("/payments/verify", body)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "validation_error")

    def test_gateway_down_is_retryable(self):
        with patch("payments.services.gateway.create_order", side_effect=GatewayError("timeout")):
            with self.assertLogs("payments.services", level="ERROR"):
                resp = self._post(f"/payments/order/{self.order.pk}")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"], "external_service_error")
        self.assertNotIn("timeout", resp.json()["message"])

    def test_failure_and_retry_endpoints(self):
        self.open_intent("order_ABC")
        resp = self._post("/payments/failure", {"gatewayOrderId": "order_ABC", "reason": "card declined"})
        self.assertEqual(resp.status_code, 200)
        resp = self._post(f"/payments/retry/{self.order.pk}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["gatewayOrderId"], "order_ABC")

        self.client.logout()
        resp = self._post("/payments/failure", {"gatewayOrderId": "order_ABC"})
        self.assertEqual(resp.status_code, 401)

    def test_refund_not_eligible_is_conflict(self):
        resp = self._post(f"/payments/refund/{self.order.pk}", {"amount": 10})
        self.assertEqual(resp.status_code, 409)

    def test_refund_webhook(self):
        self.pay("pay_1")
        with patch("payments.services.gateway.create_refund", return_value={"id": "rfnd_1", "status": "pending"}):
            services.refund_payment(self.ctx, self.order.pk)

        raw = json.dumps({
            "event": "refund.processed",
            "payload": {"refund": {"entity": {"id": "rfnd_1", "status": "processed"}}},
        }).encode()
        good = hmac.new(WEBHOOK_SECRET, raw, hashlib.sha256).hexdigest()

        resp = self.client.post("/payments/webhook/refund", data=raw, content_type="application/json",
                                HTTP_X_GATEWAY_SIGNATURE="0" * 64)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(Refund.objects.get().status, RefundStatus.PENDING)

        resp = self.client.post("/payments/webhook/refund", data=raw, content_type="application/json",
                                HTTP_X_GATEWAY_SIGNATURE=good)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "PROCESSED")
        self.assertEqual(Refund.objects.get().status, RefundStatus.PROCESSED)
