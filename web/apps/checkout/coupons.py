"""Coupon applicator.

Validates and stacks coupon codes for one cart snapshot. Discounts are
always derived here; anything the client claims about a discount is a
hint that the orchestrator compares against this result.

Stacking rules:
    - Codes are evaluated in the order submitted.
    - Every discount is computed against the original subtotal (or the
      subtotal of the coupon's scoped products), not the running
      remainder.
    - A running budget starting at the subtotal caps each discount, so the
      accepted discounts never add up to more than the subtotal.
    - The first non-stackable coupon is accepted wherever it appears
      (budget permitting); once it is accepted every later code is
      rejected with ``NON_STACKABLE``.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from .domain import (
    CartSnapshot,
    CouponApplication,
    CouponCatalogPort,
    CouponDefinition,
    CouponRejection,
    CouponResult,
    CouponType,
    RejectionReason,
)
from .pricing import round_cents, subtotal

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def discount_for(coupon: CouponDefinition, base_cents: int) -> int:
    """Discount a coupon grants on ``base_cents``, before budget capping."""
    if coupon.type == CouponType.PERCENTAGE:
        amount = round_cents(Decimal(base_cents) * Decimal(coupon.value) / Decimal(100))
        if coupon.max_discount_cents:
            amount = min(amount, coupon.max_discount_cents)
    else:
        amount = coupon.value
    return max(0, min(amount, base_cents))


class CouponApplicator:
    """Apply coupon codes to a cart snapshot.

    Args:
        catalog: Coupon catalog used to look up definitions.
        usage_counter: ``(user_id, code) -> int`` returning how many of the
            user's orders already used ``code``.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        catalog: CouponCatalogPort,
        usage_counter: Callable[[str, str], int],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.catalog = catalog
        self.usage_counter = usage_counter
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def apply(self, cart: CartSnapshot, codes: Sequence[str]) -> CouponResult:
        order_subtotal = subtotal(cart.lines)
        budget = order_subtotal
        now = self.clock()
        accepted: list[CouponApplication] = []
        rejected: list[CouponRejection] = []
        seen: set[str] = set()
        exclusive_applied = False

        for raw in codes:
            code = normalize_code(raw)
            if not code:
                continue
            if code in seen:
                rejected.append(CouponRejection(code, RejectionReason.DUPLICATE))
                continue
            seen.add(code)

            if exclusive_applied:
                rejected.append(CouponRejection(code, RejectionReason.NON_STACKABLE))
                continue

            coupon = self.catalog.lookup(code)
            if coupon is None:
                rejected.append(CouponRejection(code, RejectionReason.NOT_FOUND))
                continue

            reason, scope, base = self._check(coupon, cart, order_subtotal, now)
            if reason is None:
                amount = min(discount_for(coupon, base), budget)
                if amount <= 0:
                    reason = RejectionReason.NOT_APPLICABLE
            if reason is not None:
                rejected.append(CouponRejection(code, reason))
                continue

            budget -= amount
            accepted.append(
                CouponApplication(
                    code=coupon.code,
                    type=coupon.type,
                    value=coupon.value,
                    discount_cents=amount,
                    scope_items=scope,
                )
            )
            if not coupon.stackable:
                exclusive_applied = True

        if rejected:
            logger.info(
                "coupons rejected",
                extra={"user_id": cart.user_id, "rejected": [r.as_dict() for r in rejected]},
            )
        return CouponResult(accepted=tuple(accepted), rejected=tuple(rejected))

    def _check(self, coupon: CouponDefinition, cart: CartSnapshot, order_subtotal: int, now: datetime):
        """Eligibility check. Returns ``(reason | None, scope_items, base_cents)``."""
        if not coupon.is_active:
            return RejectionReason.NOT_APPLICABLE, (), 0
        if coupon.expires_at <= now:
            return RejectionReason.EXPIRED, (), 0
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return RejectionReason.ALREADY_USED, (), 0
        if cart.user_id in coupon.restricted_user_ids:
            return RejectionReason.NOT_APPLICABLE, (), 0
        if coupon.allowed_user_ids and cart.user_id not in coupon.allowed_user_ids:
            return RejectionReason.NOT_APPLICABLE, (), 0
        if order_subtotal < coupon.min_order_cents:
            return RejectionReason.MIN_ORDER_NOT_MET, (), 0
        if self.usage_counter(cart.user_id, coupon.code) >= coupon.per_user_limit:
            return RejectionReason.ALREADY_USED, (), 0

        if coupon.applicable_product_ids:
            lines = [ln for ln in cart.lines if ln.product_id in coupon.applicable_product_ids]
            if not lines:
                return RejectionReason.NOT_APPLICABLE, (), 0
            scope = tuple(sorted({ln.product_id for ln in lines}))
            return None, scope, subtotal(lines)
        return None, (), order_subtotal
