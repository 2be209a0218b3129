"""Coupon catalog backed by the Django ORM."""

from typing import Optional, Sequence

from django.db.models import F

from .coupons import normalize_code
from .domain import CouponDefinition, CouponType
from .models import CouponModel


class DjangoCouponCatalog:
    """Read coupon definitions and record redemptions."""

    def lookup(self, code: str) -> Optional[CouponDefinition]:
        obj = CouponModel.objects.filter(code=normalize_code(code)).first()
        if obj is None:
            return None
        return CouponDefinition(
            code=obj.code,
            type=CouponType(obj.type),
            value=obj.value,
            expires_at=obj.expires_at,
            min_order_cents=obj.min_order_cents,
            max_discount_cents=obj.max_discount_cents,
            is_active=obj.is_active,
            usage_limit=obj.usage_limit,
            usage_count=obj.usage_count,
            per_user_limit=obj.per_user_limit,
            stackable=obj.stackable,
            applicable_product_ids=tuple(obj.applicable_product_ids or ()),
            allowed_user_ids=tuple(obj.allowed_user_ids or ()),
            restricted_user_ids=tuple(obj.restricted_user_ids or ()),
        )

    def redeem(self, codes: Sequence[str]) -> None:
        """Increment ``usage_count`` in the database, not in Python, so concurrent redemptions add up."""
        if codes:
            CouponModel.objects.filter(code__in=[normalize_code(c) for c in codes]).update(
                usage_count=F("usage_count") + 1
            )
