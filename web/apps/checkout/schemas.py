"""Pydantic schemas for the checkout API."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class CheckoutItemIn(BaseModel):
    """A line the client believes is in its cart."""

    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0, le=100)


class CouponIn(BaseModel):
    """A coupon code with the discount the client displayed (untrusted)."""

    code: str = Field(min_length=1, max_length=32)
    discount_cents: Optional[int] = Field(default=None, ge=0)


class CheckoutDTO(BaseModel):
    """Schema for starting a checkout.

    ``applied_coupons`` accepts plain codes or ``{code, discount_cents}``
    objects. Addresses are validated by the checkout core so that field
    errors come back as ``INVALID_ADDRESS`` with the offending field.
    """

    items: list[CheckoutItemIn] = Field(default_factory=list, max_length=100)
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    customer_info: Optional[dict] = None
    applied_coupons: list[CouponIn] = Field(default_factory=list, max_length=10)
    payment_method: Literal["razorpay", "cod"]
    expected_total_cents: Optional[int] = Field(default=None, ge=0)
    notes: str = Field(default="", max_length=500)
    idempotency_key: Optional[str] = Field(default=None, min_length=8, max_length=200)

    @field_validator("applied_coupons", mode="before")
    @classmethod
    def coerce_codes(cls, v):
        if isinstance(v, list):
            return [{"code": c} if isinstance(c, str) else c for c in v]
        return v

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class VerifyPaymentDTO(BaseModel):
    """Second leg of an online payment: proof or a dismissal report."""

    intent_id: str = Field(min_length=1, max_length=64)
    payment_id: Optional[str] = Field(default=None, max_length=64)
    signature: Optional[str] = Field(default=None, max_length=128)
    dismissed: bool = False
