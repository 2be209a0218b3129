"""Pydantic schemas for orders.

Read schemas serialize the domain ``Order``; request schemas validate the
query string of the listing endpoint and the fulfillment/cancel bodies.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

OrderStatusValue = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentStatusValue = Literal["pending", "paid", "failed", "refunded"]


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    image: str
    unit_price_cents: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    line_total_cents: int


class OrderReadDTO(BaseModel):
    """Order as returned by the read endpoints."""

    id: UUID
    order_number: str
    user_id: str
    order_status: OrderStatusValue
    payment_status: PaymentStatusValue
    payment_method: Literal["razorpay", "cod"]
    payment_details: dict = {}
    items: list[OrderItemOut]
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_discount_cents: int
    total_cents: int
    currency: str
    applied_coupons: list[dict]
    shipping_address: dict
    billing_address: dict
    customer_info: dict
    notes: str = ""
    tracking_number: Optional[str] = None
    created_at: datetime
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    @classmethod
    def from_order(cls, order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            order_status=order.order_status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method.value,
            payment_details=order.payment_details,
            items=[OrderItemOut(**vars(it), line_total_cents=it.line_total_cents) for it in order.items],
            subtotal_cents=order.subtotal_cents,
            shipping_cents=order.shipping_cents,
            tax_cents=order.tax_cents,
            total_discount_cents=order.total_discount_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            applied_coupons=order.applied_coupons,
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
            customer_info=order.customer_info,
            notes=order.notes,
            tracking_number=order.tracking_number,
            created_at=order.created_at,
            estimated_delivery=order.estimated_delivery,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            cancel_reason=order.cancel_reason,
        )


class OrdersQuery(BaseModel):
    order_status: Optional[OrderStatusValue] = None
    payment_status: Optional[PaymentStatusValue] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class OrderStatusUpdateDTO(BaseModel):
    order_status: OrderStatusValue
    tracking_number: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelOrderDTO(BaseModel):
    reason: str = Field(default="Cancelled by customer", min_length=1, max_length=255)
