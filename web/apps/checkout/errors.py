"""Error taxonomy for the checkout core.

Every domain error is a ``ValueError`` whose string form is a short,
upper-case code (for example ``"INVALID_ADDRESS"``), the same convention
used across the orders app. Each error also carries an ``error_class`` so
the orchestrator can turn it into a classified result without inspecting
messages:

- ``validation``: input is incomplete or malformed; nothing happened.
- ``conflict``: the request cannot proceed as submitted (stale cart,
  idempotency conflict, another attempt in flight, upstream unavailable).
- ``payment_cancelled``: the customer abandoned the payment widget.
- ``payment_failed``: the gateway declined or failed the payment.
- ``verification_failed``: the payment proof could not be trusted.
- ``payment_pending``: the gateway outcome is unknown; reconciliation
  will settle it.
"""

REFUND_WINDOW_MESSAGE = (
    "If any amount was deducted from your account it will be refunded "
    "within 5-7 business days."
)


class CheckoutError(ValueError):
    """Base class for classified checkout errors.

    Attributes:
        code: Short upper-case error code returned to clients.
        error_class: Classification used by the response layer.
        detail: Optional extra, client-safe information.
    """

    error_class = "validation"

    def __init__(self, code: str, detail: dict | None = None):
        super().__init__(code)
        self.code = code
        self.detail = detail or {}


class ValidationError(CheckoutError):
    """Customer input is incomplete; no side effects occurred."""

    error_class = "validation"


class InvalidAddress(ValidationError):
    """An address field is missing or malformed."""

    def __init__(self, field: str, reason: str):
        super().__init__("INVALID_ADDRESS", {"field": field, "reason": reason})
        self.field = field
        self.reason = reason


class CheckoutConflict(CheckoutError):
    """The checkout cannot proceed against the current server state."""

    error_class = "conflict"


class UpstreamUnavailable(CheckoutConflict):
    """A collaborator could not be reached after retries (or its circuit is open)."""

    def __init__(self, service: str):
        super().__init__("UPSTREAM_UNAVAILABLE", {"service": service})
        self.service = service


class PaymentCancelled(CheckoutError):
    """The customer abandoned the payment. Not a funds-at-risk error."""

    error_class = "payment_cancelled"

    def __init__(self, code: str = "PAYMENT_CANCELLED", detail: dict | None = None):
        super().__init__(code, detail)


class PaymentFailed(CheckoutError):
    """The gateway reported the payment as failed or declined."""

    error_class = "payment_failed"

    def __init__(self, code: str = "PAYMENT_FAILED", detail: dict | None = None):
        super().__init__(code, {"message": REFUND_WINDOW_MESSAGE, **(detail or {})})


class PaymentVerificationFailed(CheckoutError):
    """The payment proof did not verify against the intent."""

    error_class = "verification_failed"

    def __init__(self, code: str = "VERIFICATION_FAILED", detail: dict | None = None):
        super().__init__(code, {"message": REFUND_WINDOW_MESSAGE, **(detail or {})})


class GatewayTimeout(CheckoutError):
    """The gateway outcome is unknown; never resolved as success or failure."""

    error_class = "payment_pending"

    def __init__(self, code: str = "PAYMENT_PENDING", detail: dict | None = None):
        super().__init__(code, detail)


class DuplicateCheckout(CheckoutError):
    """The idempotency token already resolved to an order.

    Not surfaced as an error: the orchestrator answers with the prior order.
    """

    error_class = "duplicate"

    def __init__(self, order_id):
        super().__init__("DUPLICATE_CHECKOUT", {"order_id": str(order_id)})
        self.order_id = order_id


class PricingConflict(CheckoutError):
    """Client-submitted pricing disagrees with the server recomputation.

    Informational only: the server value wins and the request proceeds.
    """

    error_class = "pricing"

    def __init__(self, adjustments: list[dict]):
        super().__init__("PRICING_ADJUSTED", {"adjustments": adjustments})
        self.adjustments = adjustments
