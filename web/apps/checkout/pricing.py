"""Pricing engine.

Pure functions that turn a cart snapshot and a set of accepted coupon
applications into a price breakdown. Amounts are integer minor units;
rates are ``Decimal`` and rounding is half-up to the nearest minor unit.

Tax is charged on the pre-discount subtotal. This matches how orders have
always been priced and is pending product-owner confirmation, so callers
cannot opt out of it.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS = 100_000
DEFAULT_FLAT_SHIPPING_CENTS = 5_000


@dataclass(frozen=True)
class ShippingRule:
    """Flat shipping fee, waived when the subtotal exceeds the threshold."""

    free_threshold_cents: int = DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS
    flat_fee_cents: int = DEFAULT_FLAT_SHIPPING_CENTS

    def shipping_for(self, subtotal_cents: int) -> int:
        return 0 if subtotal_cents > self.free_threshold_cents else self.flat_fee_cents


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_discount_cents: int
    total_cents: int

    def as_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_discount_cents": self.total_discount_cents,
            "total_cents": self.total_cents,
        }


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def subtotal(items: Iterable) -> int:
    """Sum of ``unit_price_cents * quantity`` over the items."""
    return sum(it.unit_price_cents * it.quantity for it in items)


def compute(items, shipping_rule: ShippingRule, tax_rate: Decimal, discounts: Iterable) -> PriceBreakdown:
    """Price a cart.

    Args:
        items: Line items exposing ``unit_price_cents`` and ``quantity``.
        shipping_rule: Threshold and flat fee used for shipping.
        tax_rate: Flat tax rate applied to the subtotal.
        discounts: Coupon applications exposing ``discount_cents``.

    Returns:
        PriceBreakdown: ``total`` is never negative, even when the
        discounts exceed the order value.
    """
    sub = subtotal(items)
    shipping = shipping_rule.shipping_for(sub)
    tax = round_cents(Decimal(sub) * Decimal(tax_rate))
    total_discount = sum(d.discount_cents for d in discounts)
    total = max(0, sub + shipping + tax - total_discount)
    return PriceBreakdown(
        subtotal_cents=sub,
        shipping_cents=shipping,
        tax_cents=tax,
        total_discount_cents=total_discount,
        total_cents=total,
    )
