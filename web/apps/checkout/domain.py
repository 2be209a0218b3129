"""Value objects and ports for the checkout core.

The dataclasses here are the DTOs passed between the orchestrator and its
collaborators. Protocols describe the ports (cart service, catalog, coupon
catalog, payment gateway, order store and attempt store); concrete
implementations live in ``adapters`` (in-process stubs), ``http_adapters``
(HTTP clients), ``idempotency`` and ``repository`` (Django ORM).
"""

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from apps.orders.domain import Order, OrderDraft


# ---- Cart / catalog ----
@dataclass(frozen=True)
class CartLine:
    """A cart line as snapshotted by the Cart Service.

    ``unit_price_cents`` is the price captured when the item was added.
    """

    product_id: str
    quantity: int
    unit_price_cents: int
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class CartSnapshot:
    """Immutable, by-value copy of a user's cart for one checkout."""

    user_id: str
    lines: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class ProductInfo:
    """Current catalog facts for a product."""

    product_id: str
    name: str
    image: str
    price_cents: int
    in_stock: bool = True


# ---- Customer input ----
@dataclass(frozen=True)
class Address:
    full_name: str
    line1: str
    city: str
    state: str
    postal_code: str
    country: str
    phone: str
    line2: str = ""

    def as_dict(self) -> dict:
        return {
            "full_name": self.full_name,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
        }


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    email: str
    phone: str = ""

    def as_dict(self) -> dict:
        return {"name": self.name, "email": self.email, "phone": self.phone}


# ---- Coupons ----
class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class RejectionReason(str, Enum):
    """Why a coupon code was not applied. Always surfaced to the client."""

    EXPIRED = "EXPIRED"
    MIN_ORDER_NOT_MET = "MIN_ORDER_NOT_MET"
    ALREADY_USED = "ALREADY_USED"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    NON_STACKABLE = "NON_STACKABLE"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE = "DUPLICATE"


@dataclass(frozen=True)
class CouponDefinition:
    """Coupon record as returned by the coupon catalog.

    Attributes:
        value: Percent (0-100] for percentage coupons, minor units for
            fixed coupons.
        max_discount_cents: Optional cap for percentage coupons.
        usage_limit: Global redemption cap, ``None`` for unlimited.
        per_user_limit: How many orders a single user may use it on.
        applicable_product_ids: When non-empty, the discount base is the
            subtotal of these products only.
    """

    code: str
    type: CouponType
    value: int
    expires_at: datetime
    min_order_cents: int = 0
    max_discount_cents: Optional[int] = None
    is_active: bool = True
    usage_limit: Optional[int] = None
    usage_count: int = 0
    per_user_limit: int = 1
    stackable: bool = True
    applicable_product_ids: tuple = ()
    allowed_user_ids: tuple = ()
    restricted_user_ids: tuple = ()


@dataclass(frozen=True)
class CouponApplication:
    """An accepted coupon with its server-derived discount."""

    code: str
    type: CouponType
    value: int
    discount_cents: int
    scope_items: tuple = ()

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "type": self.type.value,
            "value": self.value,
            "discount_cents": self.discount_cents,
            "scope_items": list(self.scope_items),
        }


@dataclass(frozen=True)
class CouponRejection:
    code: str
    reason: RejectionReason

    def as_dict(self) -> dict:
        return {"code": self.code, "reason": self.reason.value}


@dataclass(frozen=True)
class CouponResult:
    accepted: tuple = ()
    rejected: tuple = ()


# ---- Payment gateway ----
class IntentStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    amount_cents: int
    currency: str
    status: IntentStatus = IntentStatus.CREATED


@dataclass(frozen=True)
class PaymentProof:
    """Proof handed back by the client-side payment widget."""

    payment_id: str
    signature: str


def canonical_hash(payload) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def payment_signature(secret: str, intent_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``"{intent_id}|{payment_id}"`` keyed by the gateway secret."""
    message = f"{intent_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_matches(secret: str, intent_id: str, payment_id: str, signature: str) -> bool:
    return hmac.compare_digest(payment_signature(secret, intent_id, payment_id), signature or "")


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying a payment proof.

    ``reason`` is a short code for failed outcomes, for example
    ``SIGNATURE_MISMATCH`` (untrusted proof) or ``PAYMENT_DECLINED``.
    """

    outcome: VerificationOutcome
    reason: Optional[str] = None
    payment_id: Optional[str] = None
    amount_cents: Optional[int] = None

    @property
    def verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    failure_reason: Optional[str] = None


# ---- Checkout attempts (idempotency records) ----
class AttemptState(str, Enum):
    VALIDATING = "validating"
    AWAITING_PAYMENT = "awaiting_payment"
    VERIFYING = "verifying"
    UNKNOWN = "unknown"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


@dataclass
class CheckoutAttempt:
    """Idempotency record tracking one checkout through its states.

    Attributes:
        draft: Serialized priced order (see ``orchestrator.draft_to_dict``)
            kept between the two legs of an online payment.
        response_status: Stored HTTP status of the final answer, 0 while
            the attempt is in flight.
        cart_cleared: False while a cart clear is still owed for the
            attempt's order.
    """

    key: str
    user_id: str
    request_hash: str
    payment_method: str
    state: AttemptState = AttemptState.VALIDATING
    draft: dict = field(default_factory=dict)
    intent_id: Optional[str] = None
    order_id: Optional[str] = None
    response_status: int = 0
    response_body: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None
    cart_cleared: bool = True
    generation: int = 0
    updated_at: Optional[datetime] = None

    @property
    def gateway_key(self) -> str:
        """Idempotency key sent to the gateway; new per restarted attempt."""
        return f"{self.key}:{self.generation}"


# ---- Ports (DIP) ----
class CartPort(Protocol):
    def get_snapshot(self, user_id: str) -> CartSnapshot: ...

    def clear(self, user_id: str) -> None: ...


class CatalogPort(Protocol):
    def lookup_products(self, product_ids: Iterable[str]) -> Dict[str, ProductInfo]: ...


class CouponCatalogPort(Protocol):
    def lookup(self, code: str) -> Optional[CouponDefinition]: ...

    def redeem(self, codes: Sequence[str]) -> None: ...


class PaymentGatewayPort(Protocol):
    """Port for the external payment processor.

    ``create_intent`` must be idempotent per ``idempotency_key``: retried
    calls return the same intent. ``verify`` is the only trusted source of
    "payment succeeded".
    """

    def create_intent(self, amount_cents: int, currency: str, idempotency_key: str) -> PaymentIntent: ...

    def verify(self, intent_id: str, proof: PaymentProof) -> VerificationResult: ...

    def query_status(self, intent_id: str) -> IntentStatus: ...

    def refund(self, intent_id: str, amount_cents: int) -> RefundResult: ...


class OrderStorePort(Protocol):
    def create(self, draft: OrderDraft) -> tuple:
        """Persist ``draft`` exactly once per idempotency key.

        Returns:
            tuple[Order, bool]: The order and whether this call created
            it. A second call with the same key returns the existing order
            and False.
        """
        ...

    def get(self, order_id) -> Order: ...

    def get_by_idempotency_key(self, key: str) -> Optional[Order]: ...

    def count_coupon_usage(self, user_id: str, code: str) -> int: ...


class AttemptStorePort(Protocol):
    def get_or_create(self, key: str, user_id: str, payload: dict, payment_method: str) -> tuple:
        """Return ``(existing, attempt)``.

        Raises:
            CheckoutConflict: ``IDEMPOTENCY_CONFLICT`` when ``key`` exists
                with a different payload.
        """
        ...

    def get_by_intent(self, intent_id: str) -> Optional[CheckoutAttempt]: ...

    def save(self, attempt: CheckoutAttempt) -> None: ...

    def discard(self, attempt: CheckoutAttempt) -> None:
        """Forget an attempt that produced no side effects."""
        ...

    def restart(self, attempt: CheckoutAttempt) -> bool:
        """Atomically move a failed/cancelled attempt back to ``validating``.

        Bumps ``generation`` and clears intent and response. Returns False
        when another request restarted or advanced it first.
        """
        ...

    def pending_reconciliation(self, older_than: datetime) -> List[CheckoutAttempt]: ...

    def pending_cart_clears(self) -> List[CheckoutAttempt]: ...
