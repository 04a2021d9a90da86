from django.db import IntegrityError
from django.test import RequestFactory, SimpleTestCase

from marketplace.errors import GatewayUnavailable, InsufficientStock, InvalidTransition, SignatureInvalid
from marketplace.middleware import ApiErrorMiddleware


class ApiErrorMiddlewareTests(SimpleTestCase):
    def setUp(self):
        self.middleware = ApiErrorMiddleware(lambda request: None)
        self.request = RequestFactory().post("/checkout")

    def render(self, exc):
        return self.middleware.process_exception(self.request, exc)

    def test_service_errors_keep_kind_and_status(self):
        cases = [
            (InsufficientStock("abc"), 409, "conflict"),
            (InvalidTransition("status", "DELIVERED", "PENDING"), 409, "conflict"),
            (SignatureInvalid(), 403, "security_error"),
        ]
        for exc, status, kind in cases:
            with self.subTest(exc=exc):
                response = self.render(exc)
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.json()["error"], kind)
                self.assertEqual(response.json()["message"], exc.message)

    def test_upstream_errors_are_logged(self):
        with self.assertLogs("marketplace.middleware", level="ERROR"):
            response = self.render(GatewayUnavailable())
        self.assertEqual(response.status_code, 503)

    def test_unexpected_errors_do_not_leak(self):
        with self.assertLogs("marketplace.middleware", level="ERROR") as cm:
            response = self.render(IntegrityError('duplicate key value violates unique constraint "orders_order_pkey"'))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "internal_error", "message": "Internal server error"})
        self.assertIn("Unhandled error on POST /checkout", cm.output[0])
