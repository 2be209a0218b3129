"""Domain models and state machine for persisted orders.

This module contains the enums describing an order's lifecycle, the frozen
dataclasses used to hand a priced order to the store, and the transition
rules the Order Store enforces. It has no Django dependency so the
checkout orchestrator and unit tests can use it directly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
from uuid import UUID


# ---- Enums ----
class OrderStatus(str, Enum):
    """Fulfillment status of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Settlement status of an order, independent of fulfillment."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"


# Forward path; each status may only move to the next one.
_FORWARD = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

ESTIMATED_DELIVERY = timedelta(days=7)

CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class OrderNotFound(ValueError):
    def __init__(self, order_id):
        super().__init__("NOT_FOUND")
        self.order_id = order_id


class IllegalTransition(ValueError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, current: str, requested: str):
        super().__init__("ILLEGAL_TRANSITION")
        self.current = current
        self.requested = requested


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Return True when ``current -> new`` is a legal order transition.

    Legal moves are one step forward along
    ``pending -> confirmed -> processing -> shipped -> delivered`` and
    ``pending|confirmed -> cancelled``. Everything else, including any move
    out of ``cancelled`` or ``delivered``, is rejected.
    """
    if new == OrderStatus.CANCELLED:
        return current in CANCELLABLE
    if current not in _FORWARD or new not in _FORWARD:
        return False
    return _FORWARD.index(new) == _FORWARD.index(current) + 1


def ensure_transition(current: OrderStatus, new: OrderStatus) -> None:
    if not can_transition(current, new):
        raise IllegalTransition(current.value, new.value)


def ensure_payment_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    if new not in PAYMENT_TRANSITIONS[current]:
        raise IllegalTransition(current.value, new.value)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """Frozen copy of a purchased line item.

    Name, image and unit price are captured at purchase time and never
    re-read from the catalog afterwards.
    """

    product_id: str
    name: str
    image: str
    unit_price_cents: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class OrderDraft:
    """A fully priced order ready to be persisted exactly once.

    Attributes:
        idempotency_key: Checkout token the order is created under. The
            store guarantees at most one order per key.
        payment_details: Gateway references for online payments.
    """

    idempotency_key: str
    user_id: str
    items: tuple
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_discount_cents: int
    total_cents: int
    currency: str
    applied_coupons: tuple
    shipping_address: dict
    billing_address: dict
    customer_info: dict
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    notes: str = ""
    payment_details: dict = field(default_factory=dict)


@dataclass
class Order:
    """Read model of a persisted order."""

    id: UUID
    order_number: str
    user_id: str
    items: List[OrderItem]
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_discount_cents: int
    total_cents: int
    currency: str
    applied_coupons: list
    shipping_address: dict
    billing_address: dict
    customer_info: dict
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    created_at: datetime
    idempotency_key: str = ""
    notes: str = ""
    payment_details: dict = field(default_factory=dict)
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


def format_order_number(internal_id: int) -> str:
    """Human-facing order number derived from the internal sequence id."""
    return f"ORD-{internal_id:08d}"
