"""Checkout orchestrator.

Coordinates one checkout from the customer's request to a persisted order:

    validate -> price -> (create intent -> [customer pays] -> verify) | COD
             -> persist order -> clear cart

The orchestrator owns idempotency. Every checkout runs under a key (the
client's ``Idempotency-Key`` or one derived from user, cart and payment
method) recorded as a ``CheckoutAttempt``. Replays of a resolved key answer
with the stored response, an order is created at most once per key, and a
key whose payment outcome is unknown never starts a second payment.

All failures leave this class as a classified ``CheckoutResult``; domain
exceptions are raised internally and converted at the public methods.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from apps.orders.domain import OrderDraft, OrderItem, OrderStatus, PaymentMethod, PaymentStatus

from . import addresses, pricing
from .coupons import CouponApplicator, normalize_code
from .domain import (
    AttemptState,
    AttemptStorePort,
    CartPort,
    CartSnapshot,
    CatalogPort,
    CheckoutAttempt,
    CouponCatalogPort,
    IntentStatus,
    OrderStorePort,
    PaymentGatewayPort,
    PaymentProof,
    VerificationOutcome,
    canonical_hash,
)
from .errors import (
    CheckoutConflict,
    CheckoutError,
    GatewayTimeout,
    PaymentCancelled,
    PaymentFailed,
    PaymentVerificationFailed,
    PricingConflict,
    UpstreamUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_CLASS = {
    "validation": 400,
    "conflict": 409,
    "payment_failed": 402,
    "verification_failed": 402,
    "payment_pending": 202,
    "payment_cancelled": 200,
}

# Reasons reported by the gateway adapter that mean "proof not trustworthy"
# rather than "payment did not go through".
UNTRUSTED_PROOF_REASONS = frozenset({"SIGNATURE_MISMATCH", "INTENT_MISMATCH", "PAYMENT_MISMATCH", "AMOUNT_MISMATCH"})

RESTARTABLE_STATES = frozenset({AttemptState.PAYMENT_FAILED, AttemptState.CANCELLED})
AMOUNT_TOLERANCE_CENTS = 1


@dataclass(frozen=True)
class CheckoutConfig:
    currency: str = "INR"
    tax_rate: Decimal = pricing.DEFAULT_TAX_RATE
    shipping_rule: pricing.ShippingRule = field(default_factory=pricing.ShippingRule)
    gateway_key_id: str = ""
    reconcile_after: timedelta = timedelta(minutes=15)


@dataclass(frozen=True)
class CheckoutRequest:
    """Customer checkout request.

    Attributes:
        items: ``(product_id, quantity)`` pairs the client believes are in
            the cart. Used to derive the idempotency key and to detect a
            cart that changed under the client; the Cart Service snapshot
            stays authoritative.
        client_discounts: ``code -> discount_cents`` as displayed by the
            client. Untrusted hints.
    """

    user_id: str
    payment_method: PaymentMethod
    shipping_address: dict
    customer_info: dict
    items: tuple = ()
    billing_address: Optional[dict] = None
    coupon_codes: tuple = ()
    client_discounts: dict = field(default_factory=dict)
    expected_total_cents: Optional[int] = None
    notes: str = ""
    idempotency_key: Optional[str] = None

    def fingerprint(self) -> dict:
        """JSON payload identifying the request for idempotency checks."""
        return {
            "user_id": self.user_id,
            "payment_method": self.payment_method.value,
            "items": sorted([list(it) for it in self.items]),
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "customer_info": self.customer_info,
            "coupon_codes": [normalize_code(c) for c in self.coupon_codes],
        }


@dataclass(frozen=True)
class VerifyRequest:
    """Second leg of an online payment.

    Either ``payment_id`` and ``signature`` (the widget's proof) or
    ``dismissed=True`` when the customer closed the widget.
    """

    user_id: str
    intent_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    dismissed: bool = False


@dataclass(frozen=True)
class CheckoutResult:
    http_status: int
    body: dict
    replayed: bool = False

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))

    @property
    def error_class(self) -> Optional[str]:
        return self.body.get("error_class")


@dataclass
class ReconcileReport:
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    still_pending: int = 0
    discarded: int = 0
    carts_cleared: int = 0
    errors: int = 0


def derive_idempotency_key(user_id: str, items, payment_method: PaymentMethod) -> str:
    """Key for clients that send none: ``sha256(user + cart hash + method)``."""
    cart_hash = canonical_hash(sorted([list(it) for it in items]))
    return "chk_" + canonical_hash([user_id, cart_hash, payment_method.value])[:40]


def error_result(exc: CheckoutError) -> CheckoutResult:
    status_code = 503 if exc.code == "UPSTREAM_UNAVAILABLE" else STATUS_BY_CLASS.get(exc.error_class, 400)
    body = {"success": False, "error": exc.code, "error_class": exc.error_class}
    body.update(exc.detail)
    return CheckoutResult(status_code, body)


def draft_to_dict(draft: OrderDraft) -> dict:
    return {
        "idempotency_key": draft.idempotency_key,
        "user_id": draft.user_id,
        "items": [vars(it).copy() for it in draft.items],
        "subtotal_cents": draft.subtotal_cents,
        "shipping_cents": draft.shipping_cents,
        "tax_cents": draft.tax_cents,
        "total_discount_cents": draft.total_discount_cents,
        "total_cents": draft.total_cents,
        "currency": draft.currency,
        "applied_coupons": list(draft.applied_coupons),
        "shipping_address": draft.shipping_address,
        "billing_address": draft.billing_address,
        "customer_info": draft.customer_info,
        "payment_method": draft.payment_method.value,
        "payment_status": draft.payment_status.value,
        "order_status": draft.order_status.value,
        "notes": draft.notes,
        "payment_details": draft.payment_details,
    }


def draft_from_dict(data: dict) -> OrderDraft:
    return OrderDraft(
        idempotency_key=data["idempotency_key"],
        user_id=data["user_id"],
        items=tuple(OrderItem(**it) for it in data["items"]),
        subtotal_cents=data["subtotal_cents"],
        shipping_cents=data["shipping_cents"],
        tax_cents=data["tax_cents"],
        total_discount_cents=data["total_discount_cents"],
        total_cents=data["total_cents"],
        currency=data["currency"],
        applied_coupons=tuple(data["applied_coupons"]),
        shipping_address=data["shipping_address"],
        billing_address=data["billing_address"],
        customer_info=data["customer_info"],
        payment_method=PaymentMethod(data["payment_method"]),
        payment_status=PaymentStatus(data["payment_status"]),
        order_status=OrderStatus(data["order_status"]),
        notes=data.get("notes", ""),
        payment_details=data.get("payment_details") or {},
    )


class CheckoutOrchestrator:
    """Top-level coordinator invoked once per checkout request.

    The instance holds no per-request state; all shared state lives in the
    attempt store, the order store and the collaborators, so one instance
    may serve concurrent requests.
    """

    def __init__(
        self,
        cart: CartPort,
        catalog: CatalogPort,
        coupons: CouponCatalogPort,
        gateway: PaymentGatewayPort,
        orders: OrderStorePort,
        attempts: AttemptStorePort,
        config: Optional[CheckoutConfig] = None,
        clock=None,
    ):
        self.cart = cart
        self.catalog = catalog
        self.coupons = coupons
        self.gateway = gateway
        self.orders = orders
        self.attempts = attempts
        self.config = config or CheckoutConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.applicator = CouponApplicator(coupons, orders.count_coupon_usage, clock=self.clock)

    # ------------------------------------------------------------------ #
    # First leg
    # ------------------------------------------------------------------ #
    def checkout(self, req: CheckoutRequest) -> CheckoutResult:
        try:
            return self._checkout(req)
        except CheckoutError as exc:
            logger.info("checkout rejected", extra={"user_id": req.user_id, "code": exc.code})
            return error_result(exc)

    def _checkout(self, req: CheckoutRequest) -> CheckoutResult:
        # 1) Validate input before anything touches the outside world
        customer = addresses.validate_customer(req.customer_info)
        shipping = addresses.validate(req.shipping_address, fallback_name=customer.name)
        billing = addresses.validate(req.billing_address, fallback_name=customer.name) if req.billing_address else shipping

        key = req.idempotency_key
        if not key:
            if not req.items:
                raise ValidationError("EMPTY_CART")
            key = derive_idempotency_key(req.user_id, req.items, req.payment_method)

        # 2) Claim the key
        existing, attempt = self.attempts.get_or_create(key, req.user_id, req.fingerprint(), req.payment_method.value)
        if existing:
            replay = self._resume(attempt)
            if replay is not None:
                return replay

        # 3) Price against an authoritative snapshot, read exactly once
        try:
            snapshot = self.cart.get_snapshot(req.user_id)
            items = self._freeze_items(snapshot, req.items)
            coupon_result = self.applicator.apply(snapshot, req.coupon_codes)
        except CheckoutError:
            self.attempts.discard(attempt)
            raise

        breakdown = pricing.compute(snapshot.lines, self.config.shipping_rule, self.config.tax_rate, coupon_result.accepted)
        adjustments = self._pricing_adjustments(req, coupon_result, breakdown)
        method = req.payment_method
        draft = OrderDraft(
            idempotency_key=key,
            user_id=req.user_id,
            items=items,
            subtotal_cents=breakdown.subtotal_cents,
            shipping_cents=breakdown.shipping_cents,
            tax_cents=breakdown.tax_cents,
            total_discount_cents=breakdown.total_discount_cents,
            total_cents=breakdown.total_cents,
            currency=self.config.currency,
            applied_coupons=tuple(c.as_dict() for c in coupon_result.accepted),
            shipping_address=shipping.as_dict(),
            billing_address=billing.as_dict(),
            customer_info=customer.as_dict(),
            payment_method=method,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
            notes=req.notes,
        )
        summary = {
            "pricing": breakdown.as_dict(),
            "coupons": {
                "accepted": [c.as_dict() for c in coupon_result.accepted],
                "rejected": [r.as_dict() for r in coupon_result.rejected],
            },
            "pricing_adjusted": bool(adjustments),
            "adjustments": adjustments,
        }
        attempt.draft = {**draft_to_dict(draft), "summary": summary}

        # 4) Branch on payment method
        if method == PaymentMethod.COD:
            return self._complete(attempt, draft, summary)
        return self._start_online_payment(attempt, draft, summary)

    def _resume(self, attempt: CheckoutAttempt) -> Optional[CheckoutResult]:
        """Decide what a request for an already-claimed key gets.

        Returns None when the attempt was restarted and the caller should
        run the checkout again under it.
        """
        order = self.orders.get_by_idempotency_key(attempt.key)
        if order is not None:
            if attempt.state != AttemptState.COMPLETED:
                self._mark_completed(attempt, order)
            logger.info("checkout replayed", extra={"idempotency_key": attempt.key, "order_id": str(order.id)})
            return CheckoutResult(200, self._order_body(order, attempt.draft.get("summary", {})), replayed=True)

        if attempt.state in RESTARTABLE_STATES:
            if self.attempts.restart(attempt):
                logger.info("checkout attempt restarted", extra={"idempotency_key": attempt.key})
                return None
            raise CheckoutConflict("CHECKOUT_IN_PROGRESS")
        if attempt.state == AttemptState.UNKNOWN:
            raise GatewayTimeout(detail={"intent_id": attempt.intent_id})
        if attempt.response_status:
            return CheckoutResult(attempt.response_status, attempt.response_body, replayed=True)
        raise CheckoutConflict("CHECKOUT_IN_PROGRESS")

    def _freeze_items(self, snapshot: CartSnapshot, hinted) -> tuple:
        """Check the snapshot against the catalog and the client's view.

        Returns the frozen order items (name, image and price captured now).
        """
        if snapshot.is_empty:
            raise ValidationError("EMPTY_CART")

        if hinted:
            client_view, server_view = {}, {}
            for product_id, quantity in hinted:
                client_view[product_id] = client_view.get(product_id, 0) + quantity
            for line in snapshot.lines:
                server_view[line.product_id] = server_view.get(line.product_id, 0) + line.quantity
            if client_view != server_view:
                raise CheckoutConflict("CART_CHANGED")

        products = self.catalog.lookup_products([ln.product_id for ln in snapshot.lines])
        unavailable = [ln.product_id for ln in snapshot.lines if ln.product_id not in products or not products[ln.product_id].in_stock]
        if unavailable:
            raise CheckoutConflict("PRODUCT_UNAVAILABLE", {"products": unavailable})
        stale = [ln.product_id for ln in snapshot.lines if products[ln.product_id].price_cents != ln.unit_price_cents]
        if stale:
            raise CheckoutConflict("STALE_CART", {"products": stale})

        return tuple(
            OrderItem(
                product_id=ln.product_id,
                name=products[ln.product_id].name,
                image=products[ln.product_id].image,
                unit_price_cents=ln.unit_price_cents,
                quantity=ln.quantity,
                size=ln.size,
                color=ln.color,
            )
            for ln in snapshot.lines
        )

    def _pricing_adjustments(self, req: CheckoutRequest, coupon_result, breakdown) -> list:
        server = {c.code: c.discount_cents for c in coupon_result.accepted}
        adjustments = []
        for raw_code, claimed in (req.client_discounts or {}).items():
            code = normalize_code(raw_code)
            actual = server.get(code, 0)
            if abs(int(claimed) - actual) > AMOUNT_TOLERANCE_CENTS:
                adjustments.append({"field": "discount", "code": code, "submitted": int(claimed), "applied": actual})
        if req.expected_total_cents is not None and abs(req.expected_total_cents - breakdown.total_cents) > AMOUNT_TOLERANCE_CENTS:
            adjustments.append({"field": "total", "submitted": req.expected_total_cents, "applied": breakdown.total_cents})
        if adjustments:
            conflict = PricingConflict(adjustments)
            logger.info("pricing adjusted", extra={"user_id": req.user_id, "code": conflict.code, "adjustments": adjustments})
        return adjustments

    def _start_online_payment(self, attempt: CheckoutAttempt, draft: OrderDraft, summary: dict) -> CheckoutResult:
        if draft.total_cents <= 0:
            self.attempts.discard(attempt)
            raise ValidationError("NOTHING_TO_PAY_ONLINE")
        try:
            intent = self.gateway.create_intent(draft.total_cents, draft.currency, attempt.gateway_key)
        except CheckoutError as exc:
            # An intent may exist at the gateway under this generation's key.
            # Park the attempt as cancelled so a retry restarts it with a new key.
            attempt.state = AttemptState.CANCELLED
            attempt.failure_reason = exc.code
            failed = error_result(exc)
            self._finalize(attempt, failed.http_status, failed.body)
            raise

        attempt.intent_id = intent.intent_id
        attempt.state = AttemptState.AWAITING_PAYMENT
        body = {
            "success": True,
            "status": AttemptState.AWAITING_PAYMENT.value,
            "idempotency_key": attempt.key,
            "intent_id": intent.intent_id,
            "amount_cents": intent.amount_cents,
            "currency": intent.currency,
            "key_id": self.config.gateway_key_id,
            **summary,
        }
        self._finalize(attempt, 200, body)
        logger.info("payment intent created", extra={"idempotency_key": attempt.key, "intent_id": intent.intent_id})
        return CheckoutResult(200, body)

    # ------------------------------------------------------------------ #
    # Second leg
    # ------------------------------------------------------------------ #
    def verify(self, req: VerifyRequest) -> CheckoutResult:
        try:
            return self._verify(req)
        except CheckoutError as exc:
            logger.info("payment verification rejected", extra={"intent_id": req.intent_id, "code": exc.code})
            result = error_result(exc)
            attempt = self.attempts.get_by_intent(req.intent_id)
            if attempt is not None and attempt.user_id == req.user_id and attempt.state in (
                AttemptState.PAYMENT_FAILED,
                AttemptState.UNKNOWN,
            ):
                self._finalize(attempt, result.http_status, result.body)
            return result

    def _verify(self, req: VerifyRequest) -> CheckoutResult:
        attempt = self.attempts.get_by_intent(req.intent_id)
        if attempt is None or attempt.user_id != req.user_id:
            raise ValidationError("UNKNOWN_INTENT")

        order = self.orders.get_by_idempotency_key(attempt.key)
        if order is not None:
            if attempt.state != AttemptState.COMPLETED:
                self._mark_completed(attempt, order)
            return CheckoutResult(200, self._order_body(order, attempt.draft.get("summary", {})), replayed=True)
        if attempt.state in (AttemptState.PAYMENT_FAILED, AttemptState.CANCELLED) and attempt.response_status:
            return CheckoutResult(attempt.response_status, attempt.response_body, replayed=True)

        if req.dismissed or not (req.payment_id and req.signature):
            return self._handle_dismissal(attempt)

        attempt.state = AttemptState.VERIFYING
        self.attempts.save(attempt)
        result = self.gateway.verify(attempt.intent_id, PaymentProof(req.payment_id, req.signature))

        if result.outcome == VerificationOutcome.UNKNOWN:
            attempt.state = AttemptState.UNKNOWN
            attempt.failure_reason = result.reason or "GATEWAY_TIMEOUT"
            self.attempts.save(attempt)
            logger.warning("payment outcome unknown", extra={"intent_id": attempt.intent_id, "reason": attempt.failure_reason})
            raise GatewayTimeout(detail={"intent_id": attempt.intent_id})
        if result.outcome == VerificationOutcome.CANCELLED:
            attempt.state = AttemptState.AWAITING_PAYMENT
            self.attempts.save(attempt)
            raise PaymentCancelled(detail={"intent_id": attempt.intent_id})
        if result.outcome == VerificationOutcome.FAILED:
            self._fail(attempt, result.reason or "PAYMENT_FAILED")

        total = attempt.draft["total_cents"]
        if result.amount_cents is not None and abs(result.amount_cents - total) > AMOUNT_TOLERANCE_CENTS:
            logger.error(
                "verified amount does not match order total",
                extra={"intent_id": attempt.intent_id, "verified": result.amount_cents, "expected": total},
            )
            self._fail(attempt, "AMOUNT_MISMATCH")

        details = {
            "intent_id": attempt.intent_id,
            "payment_id": result.payment_id,
            "amount_cents": result.amount_cents if result.amount_cents is not None else total,
            "currency": attempt.draft["currency"],
            "paid_at": self.clock().isoformat(),
        }
        return self._complete_online(attempt, details)

    def _handle_dismissal(self, attempt: CheckoutAttempt) -> CheckoutResult:
        """The widget closed without a proof; ask the gateway what happened."""
        try:
            status = self.gateway.query_status(attempt.intent_id)
        except UpstreamUnavailable:
            status = IntentStatus.UNKNOWN

        if status == IntentStatus.PAID:
            details = {"intent_id": attempt.intent_id, "amount_cents": attempt.draft["total_cents"],
                       "currency": attempt.draft["currency"], "paid_at": self.clock().isoformat(), "source": "status_query"}
            return self._complete_online(attempt, details)
        if status == IntentStatus.FAILED:
            self._fail(attempt, "PAYMENT_DECLINED")
        if status == IntentStatus.UNKNOWN:
            attempt.state = AttemptState.UNKNOWN
            attempt.failure_reason = "STATUS_UNKNOWN"
            self.attempts.save(attempt)
            raise GatewayTimeout(detail={"intent_id": attempt.intent_id})

        # Still payable: keep the intent so a retry reuses it.
        attempt.state = AttemptState.AWAITING_PAYMENT
        self.attempts.save(attempt)
        raise PaymentCancelled(detail={"intent_id": attempt.intent_id})

    def _fail(self, attempt: CheckoutAttempt, reason: str):
        attempt.state = AttemptState.PAYMENT_FAILED
        attempt.failure_reason = reason
        self.attempts.save(attempt)
        logger.warning("payment failed", extra={"intent_id": attempt.intent_id, "reason": reason})
        if reason in UNTRUSTED_PROOF_REASONS:
            raise PaymentVerificationFailed(detail={"reason": reason})
        raise PaymentFailed(detail={"reason": reason})

    def _complete_online(self, attempt: CheckoutAttempt, details: dict) -> CheckoutResult:
        draft = replace(
            draft_from_dict(attempt.draft),
            payment_status=PaymentStatus.PAID,
            order_status=OrderStatus.CONFIRMED,
            payment_details=details,
        )
        return self._complete(attempt, draft, attempt.draft.get("summary", {}))

    # ------------------------------------------------------------------ #
    # Persist + clear
    # ------------------------------------------------------------------ #
    def _complete(self, attempt: CheckoutAttempt, draft: OrderDraft, summary: dict) -> CheckoutResult:
        attempt.state = AttemptState.PERSISTING
        self.attempts.save(attempt)

        order, created = self.orders.create(draft)
        if created:
            self.coupons.redeem([c["code"] for c in draft.applied_coupons])
            logger.info(
                "order created",
                extra={"order_id": str(order.id), "order_number": order.order_number, "payment_method": draft.payment_method.value},
            )
        body = self._mark_completed(attempt, order, summary)
        return CheckoutResult(201 if created else 200, body, replayed=not created)

    def _mark_completed(self, attempt: CheckoutAttempt, order, summary: Optional[dict] = None) -> dict:
        already_cleared = attempt.state == AttemptState.COMPLETED and attempt.cart_cleared
        attempt.order_id = str(order.id)
        attempt.state = AttemptState.COMPLETED
        attempt.cart_cleared = already_cleared
        body = self._order_body(order, summary if summary is not None else attempt.draft.get("summary", {}))
        self._finalize(attempt, 201, body)
        if not already_cleared:
            self._clear_cart(attempt)
        return body

    def _clear_cart(self, attempt: CheckoutAttempt) -> bool:
        """Clear the user's cart; on failure leave it queued for reconciliation."""
        try:
            self.cart.clear(attempt.user_id)
        except Exception:
            logger.exception("cart clear failed; queued for retry", extra={"user_id": attempt.user_id, "order_id": attempt.order_id})
            return False
        attempt.cart_cleared = True
        self.attempts.save(attempt)
        return True

    def _finalize(self, attempt: CheckoutAttempt, status_code: int, body: dict) -> None:
        attempt.response_status = status_code
        attempt.response_body = body
        self.attempts.save(attempt)

    def _order_body(self, order, summary: dict) -> dict:
        return {
            "success": True,
            "status": "created",
            "order_id": str(order.id),
            "order_number": order.order_number,
            "order_status": order.order_status.value,
            "payment_status": order.payment_status.value,
            "total_cents": order.total_cents,
            "currency": order.currency,
            **summary,
        }

    # ------------------------------------------------------------------ #
    # Reconciliation
    # ------------------------------------------------------------------ #
    def reconcile(self) -> ReconcileReport:
        """Settle attempts stuck on an unknown gateway outcome and owed cart clears.

        Intended to run periodically (see the ``reconcile_checkouts``
        management command). Never creates an order for an intent the
        gateway does not report as paid.
        """
        report = ReconcileReport()
        cutoff = self.clock() - self.config.reconcile_after
        for attempt in self.attempts.pending_reconciliation(cutoff):
            try:
                self._reconcile_attempt(attempt, report)
            except UpstreamUnavailable:
                report.errors += 1
                logger.warning("reconciliation deferred; gateway unavailable", extra={"intent_id": attempt.intent_id})

        for attempt in self.attempts.pending_cart_clears():
            if self._clear_cart(attempt):
                report.carts_cleared += 1
            else:
                report.errors += 1
        logger.info("reconciliation finished", extra=vars(report).copy())
        return report

    def _reconcile_attempt(self, attempt: CheckoutAttempt, report: ReconcileReport) -> None:
        order = self.orders.get_by_idempotency_key(attempt.key)
        if order is not None:
            self._mark_completed(attempt, order)
            report.completed += 1
            return
        if not attempt.intent_id:
            # COD attempt that died before persisting: nothing happened, free the key
            self.attempts.discard(attempt)
            report.discarded += 1
            return

        status = self.gateway.query_status(attempt.intent_id)
        if status == IntentStatus.PAID:
            details = {"intent_id": attempt.intent_id, "amount_cents": attempt.draft["total_cents"],
                       "currency": attempt.draft["currency"], "paid_at": self.clock().isoformat(), "source": "reconciliation"}
            self._complete_online(attempt, details)
            report.completed += 1
            logger.warning("payment reconciled as paid", extra={"intent_id": attempt.intent_id})
        elif status == IntentStatus.FAILED:
            attempt.state = AttemptState.PAYMENT_FAILED
            attempt.failure_reason = "PAYMENT_DECLINED"
            self._finalize(attempt, 402, error_result(PaymentFailed(detail={"reason": "PAYMENT_DECLINED"})).body)
            report.failed += 1
        elif status in (IntentStatus.CANCELLED, IntentStatus.REFUNDED):
            attempt.state = AttemptState.CANCELLED
            self._finalize(attempt, 200, error_result(PaymentCancelled()).body)
            report.cancelled += 1
        else:
            report.still_pending += 1
