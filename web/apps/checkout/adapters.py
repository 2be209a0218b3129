"""In-process stub adapters for the checkout ports.

These stubs implement the cart, catalog, coupon catalog, payment gateway,
order store and attempt store ports without any network or database
access. They are intended for unit tests and local development where
deterministic behavior is useful and external services are not required.
All of them are thread-safe so concurrency tests can share one instance.
"""

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from apps.orders.domain import ESTIMATED_DELIVERY, Order, OrderDraft, OrderNotFound, format_order_number

from .domain import (
    AttemptState,
    CartLine,
    CartSnapshot,
    CheckoutAttempt,
    CouponDefinition,
    IntentStatus,
    PaymentIntent,
    PaymentProof,
    ProductInfo,
    RefundResult,
    VerificationOutcome,
    VerificationResult,
    canonical_hash,
    payment_signature,
    signature_matches,
)
from .errors import CheckoutConflict, UpstreamUnavailable


class CartServiceStub:
    """Stub Cart Service that also answers catalog lookups.

    Attributes:
        fail_clears: Number of upcoming ``clear`` calls that raise
            ``UpstreamUnavailable``.
    """

    def __init__(self, products: Optional[Iterable[ProductInfo]] = None):
        self._lock = threading.Lock()
        self.products: Dict[str, ProductInfo] = {p.product_id: p for p in products or ()}
        self.carts: Dict[str, List[CartLine]] = {}
        self.fail_clears = 0
        self.clear_calls = 0

    def add(self, user_id: str, product_id: str, quantity: int = 1, size=None, color=None) -> None:
        """Add a line, snapshotting the current catalog price."""
        with self._lock:
            price = self.products[product_id].price_cents
            self.carts.setdefault(user_id, []).append(CartLine(product_id, quantity, price, size, color))

    def get_snapshot(self, user_id: str) -> CartSnapshot:
        with self._lock:
            return CartSnapshot(user_id=user_id, lines=tuple(self.carts.get(user_id, ())))

    def clear(self, user_id: str) -> None:
        with self._lock:
            self.clear_calls += 1
            if self.fail_clears > 0:
                self.fail_clears -= 1
                raise UpstreamUnavailable("cart")
            self.carts.pop(user_id, None)

    def lookup_products(self, product_ids: Iterable[str]) -> Dict[str, ProductInfo]:
        with self._lock:
            return {pid: self.products[pid] for pid in product_ids if pid in self.products}


class CouponCatalogStub:
    def __init__(self, coupons: Optional[Iterable[CouponDefinition]] = None):
        self._lock = threading.Lock()
        self.coupons: Dict[str, CouponDefinition] = {c.code: c for c in coupons or ()}

    def lookup(self, code: str) -> Optional[CouponDefinition]:
        return self.coupons.get(code)

    def redeem(self, codes: Sequence[str]) -> None:
        with self._lock:
            for code in codes:
                c = self.coupons.get(code)
                if c is not None:
                    self.coupons[code] = CouponDefinition(**{**vars(c), "usage_count": c.usage_count + 1})


class PaymentGatewayStub:
    """Razorpay-like gateway living in memory.

    Intents are idempotent per key. ``pay``/``decline``/``abandon`` play
    the part of the customer in the payment widget. Setting
    ``verify_timeout`` makes ``verify`` behave like a timed-out call and
    ``unavailable`` makes every call fail as if the circuit were open.
    """

    def __init__(self, secret: str = "stub-secret"):
        self.secret = secret
        self._lock = threading.Lock()
        self.intents: Dict[str, dict] = {}
        self._by_key: Dict[str, str] = {}
        self.verify_timeout = False
        self.unavailable = False
        self.refunds: List[dict] = []

    @property
    def intent_count(self) -> int:
        return len(self.intents)

    def _check_available(self):
        if self.unavailable:
            raise UpstreamUnavailable("payments")

    def create_intent(self, amount_cents: int, currency: str, idempotency_key: str) -> PaymentIntent:
        self._check_available()
        with self._lock:
            iid = self._by_key.get(idempotency_key)
            if iid is None:
                iid = f"pi_{uuid.uuid4().hex[:16]}"
                self.intents[iid] = {"amount_cents": amount_cents, "currency": currency,
                                     "status": IntentStatus.CREATED, "payment_id": None}
                self._by_key[idempotency_key] = iid
            rec = self.intents[iid]
            return PaymentIntent(iid, rec["amount_cents"], rec["currency"], rec["status"])

    # -- customer side -- #
    def pay(self, intent_id: str, amount_cents: Optional[int] = None) -> PaymentProof:
        with self._lock:
            rec = self.intents[intent_id]
            rec["status"] = IntentStatus.PAID
            rec["payment_id"] = f"pay_{uuid.uuid4().hex[:14]}"
            if amount_cents is not None:
                rec["amount_cents"] = amount_cents
            return PaymentProof(rec["payment_id"], payment_signature(self.secret, intent_id, rec["payment_id"]))

    def decline(self, intent_id: str) -> None:
        with self._lock:
            self.intents[intent_id]["status"] = IntentStatus.FAILED

    def abandon(self, intent_id: str) -> None:
        with self._lock:
            self.intents[intent_id]["status"] = IntentStatus.CANCELLED

    # -- server side -- #
    def verify(self, intent_id: str, proof: PaymentProof) -> VerificationResult:
        if self.verify_timeout or self.unavailable:
            return VerificationResult(VerificationOutcome.UNKNOWN, reason="GATEWAY_TIMEOUT")
        if not signature_matches(self.secret, intent_id, proof.payment_id, proof.signature):
            return VerificationResult(VerificationOutcome.FAILED, reason="SIGNATURE_MISMATCH")
        with self._lock:
            rec = self.intents.get(intent_id)
            if rec is None:
                return VerificationResult(VerificationOutcome.FAILED, reason="INTENT_MISMATCH")
            status = rec["status"]
            if status == IntentStatus.PAID:
                if rec["payment_id"] != proof.payment_id:
                    return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_MISMATCH")
                return VerificationResult(VerificationOutcome.VERIFIED, payment_id=proof.payment_id,
                                          amount_cents=rec["amount_cents"])
            if status == IntentStatus.CANCELLED:
                return VerificationResult(VerificationOutcome.CANCELLED)
            if status == IntentStatus.FAILED:
                return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_DECLINED")
            if status == IntentStatus.REFUNDED:
                return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_REFUNDED")
            return VerificationResult(VerificationOutcome.UNKNOWN, reason="PAYMENT_NOT_CAPTURED")

    def query_status(self, intent_id: str) -> IntentStatus:
        self._check_available()
        with self._lock:
            rec = self.intents.get(intent_id)
            return rec["status"] if rec else IntentStatus.UNKNOWN

    def refund(self, intent_id: str, amount_cents: int) -> RefundResult:
        self._check_available()
        with self._lock:
            rec = self.intents.get(intent_id)
            if rec is None or rec["status"] != IntentStatus.PAID:
                return RefundResult(False, failure_reason="NOT_REFUNDABLE")
            rec["status"] = IntentStatus.REFUNDED
            refund_id = f"rfnd_{uuid.uuid4().hex[:12]}"
            self.refunds.append({"intent_id": intent_id, "amount_cents": amount_cents, "refund_id": refund_id})
            return RefundResult(True, refund_id=refund_id)


class InMemoryOrderStore:
    """Order store keeping orders in a dict, unique per idempotency key."""

    def __init__(self):
        self._lock = threading.Lock()
        self.orders: Dict[str, Order] = {}
        self._by_key: Dict[str, str] = {}

    def create(self, draft: OrderDraft) -> tuple:
        with self._lock:
            oid = self._by_key.get(draft.idempotency_key)
            if oid is not None:
                return self.orders[oid], False
            now = datetime.now(timezone.utc)
            order = Order(
                id=uuid.uuid4(),
                order_number=format_order_number(len(self.orders) + 1),
                user_id=draft.user_id,
                items=list(draft.items),
                subtotal_cents=draft.subtotal_cents,
                shipping_cents=draft.shipping_cents,
                tax_cents=draft.tax_cents,
                total_discount_cents=draft.total_discount_cents,
                total_cents=draft.total_cents,
                currency=draft.currency,
                applied_coupons=list(draft.applied_coupons),
                shipping_address=draft.shipping_address,
                billing_address=draft.billing_address,
                customer_info=draft.customer_info,
                payment_method=draft.payment_method,
                payment_status=draft.payment_status,
                order_status=draft.order_status,
                created_at=now,
                estimated_delivery=now + ESTIMATED_DELIVERY,
                idempotency_key=draft.idempotency_key,
                notes=draft.notes,
                payment_details=dict(draft.payment_details),
            )
            self.orders[str(order.id)] = order
            self._by_key[draft.idempotency_key] = str(order.id)
            return order, True

    def get(self, order_id) -> Order:
        try:
            return self.orders[str(order_id)]
        except KeyError:
            raise OrderNotFound(order_id)

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        oid = self._by_key.get(key)
        return self.orders[oid] if oid else None

    def count_coupon_usage(self, user_id: str, code: str) -> int:
        return sum(
            1
            for o in self.orders.values()
            if o.user_id == user_id and any(c["code"] == code for c in o.applied_coupons)
        )


class InMemoryAttemptStore:
    """Attempt store mirroring the semantics of the database-backed one."""

    def __init__(self):
        self._lock = threading.Lock()
        self.attempts: Dict[str, CheckoutAttempt] = {}
        self._hashes: Dict[str, str] = {}

    def get_or_create(self, key: str, user_id: str, payload: dict, payment_method: str) -> tuple:
        h = canonical_hash(payload)
        with self._lock:
            rec = self.attempts.get(key)
            if rec is None:
                rec = CheckoutAttempt(key=key, user_id=user_id, request_hash=h, payment_method=payment_method,
                                      updated_at=datetime.now(timezone.utc))
                self.attempts[key] = rec
                return False, copy.deepcopy(rec)
            if rec.request_hash != h:
                raise CheckoutConflict("IDEMPOTENCY_CONFLICT")
            return True, copy.deepcopy(rec)

    def get_by_intent(self, intent_id: str) -> Optional[CheckoutAttempt]:
        with self._lock:
            for rec in self.attempts.values():
                if rec.intent_id == intent_id:
                    return copy.deepcopy(rec)
        return None

    def save(self, attempt: CheckoutAttempt) -> None:
        with self._lock:
            attempt.updated_at = datetime.now(timezone.utc)
            self.attempts[attempt.key] = copy.deepcopy(attempt)

    def discard(self, attempt: CheckoutAttempt) -> None:
        with self._lock:
            self.attempts.pop(attempt.key, None)

    def restart(self, attempt: CheckoutAttempt) -> bool:
        with self._lock:
            rec = self.attempts.get(attempt.key)
            if rec is None or rec.state not in (AttemptState.PAYMENT_FAILED, AttemptState.CANCELLED):
                return False
            rec.generation += 1
            rec.state = AttemptState.VALIDATING
            rec.intent_id = None
            rec.response_status = 0
            rec.response_body = {}
            rec.failure_reason = None
            rec.updated_at = datetime.now(timezone.utc)
            for name, value in vars(copy.deepcopy(rec)).items():
                setattr(attempt, name, value)
            return True

    def pending_reconciliation(self, older_than: datetime) -> List[CheckoutAttempt]:
        stuck = {AttemptState.VALIDATING, AttemptState.AWAITING_PAYMENT, AttemptState.VERIFYING,
                 AttemptState.PERSISTING}
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self.attempts.values()
                if r.state == AttemptState.UNKNOWN or (r.state in stuck and r.updated_at <= older_than)
            ]

    def pending_cart_clears(self) -> List[CheckoutAttempt]:
        with self._lock:
            return [copy.deepcopy(r) for r in self.attempts.values()
                    if r.state == AttemptState.COMPLETED and not r.cart_cleared]
