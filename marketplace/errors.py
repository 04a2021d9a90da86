"""Error taxonomy shared by the checkout and payment services.

Every error carries a stable ``kind`` and an HTTP ``status_code`` so the
API middleware can render it without knowing where it came from.  Messages
are meant for end users and never include storage details.
"""


class MarketplaceError(Exception):
    kind = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(MarketplaceError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(MarketplaceError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class ConflictError(MarketplaceError):
    kind = "conflict"
    status_code = 409
    default_message = "Request conflicts with the current state"


class ExternalServiceError(MarketplaceError):
    kind = "external_service_error"
    status_code = 503
    default_message = "Upstream service unavailable, please retry"


class SecurityError(MarketplaceError):
    kind = "security_error"
    status_code = 403
    default_message = "Request could not be verified"


class EmptyCart(ValidationError):
    default_message = "Cart is empty"


class InsufficientStock(ConflictError):
    def __init__(self, offer_id, message: str | None = None):
        self.offer_id = offer_id
        super().__init__(message or f"Offer {offer_id} not available or insufficient stock")


class AlreadyProcessed(ConflictError):
    default_message = "Payment already processed for this order"


class InvalidTransition(ConflictError):
    def __init__(self, field: str, current: str, requested: str):
        self.field = field
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change {field} from {current} to {requested}")


class RefundNotEligible(ConflictError):
    default_message = "Order payment not completed"


class GatewayUnavailable(ExternalServiceError):
    default_message = "Payment gateway unavailable, please retry"


class SignatureInvalid(SecurityError):
    default_message = "Payment verification failed"
