"""Repository layer for persisting orders.

The Order Store: the only code that writes ``OrderModel`` rows. It maps
between the ORM and the domain dataclasses so the checkout core and the
fulfillment service never see Django types, and it enforces the order
state machine under a row lock.
"""

from typing import Optional

from django.core.paginator import Paginator
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from .domain import (
    ESTIMATED_DELIVERY,
    Order,
    OrderDraft,
    OrderItem,
    OrderNotFound,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ensure_payment_transition,
    ensure_transition,
)
from .models import OrderModel


def _to_domain(obj: OrderModel) -> Order:
    return Order(
        id=obj.id,
        order_number=obj.order_number,
        user_id=obj.user_id,
        items=[OrderItem(**it) for it in obj.items],
        subtotal_cents=obj.subtotal_cents,
        shipping_cents=obj.shipping_cents,
        tax_cents=obj.tax_cents,
        total_discount_cents=obj.total_discount_cents,
        total_cents=obj.total_cents,
        currency=obj.currency,
        applied_coupons=list(obj.applied_coupons or []),
        shipping_address=obj.shipping_address,
        billing_address=obj.billing_address,
        customer_info=obj.customer_info,
        payment_method=PaymentMethod(obj.payment_method),
        payment_status=PaymentStatus(obj.payment_status),
        order_status=OrderStatus(obj.order_status),
        created_at=obj.created_at,
        idempotency_key=obj.idempotency_key,
        notes=obj.notes,
        payment_details=obj.payment_details or {},
        tracking_number=obj.tracking_number,
        estimated_delivery=obj.estimated_delivery,
        delivered_at=obj.delivered_at,
        cancelled_at=obj.cancelled_at,
        cancel_reason=obj.cancel_reason,
    )


class OrderRepository:
    """Order Store backed by the Django ORM.

    Methods return domain ``Order`` objects. Status changes go through
    ``transition``/``cancel`` which lock the row (``SELECT ... FOR UPDATE``)
    and validate the move against the state machine.
    """

    def create(self, draft: OrderDraft) -> tuple:
        """Persist ``draft`` at most once per idempotency key.

        The insert runs in a savepoint; when a concurrent request already
        created the order for the same key, the unique constraint fires and
        the existing order is returned instead.

        Returns:
            tuple[Order, bool]: The order and whether this call created it.
        """
        now = timezone.now()
        try:
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    idempotency_key=draft.idempotency_key,
                    user_id=draft.user_id,
                    order_status=draft.order_status.value,
                    payment_status=draft.payment_status.value,
                    payment_method=draft.payment_method.value,
                    items=[vars(it).copy() for it in draft.items],
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
                    payment_details=draft.payment_details,
                    notes=draft.notes,
                    estimated_delivery=now + ESTIMATED_DELIVERY,
                )
        except IntegrityError:
            existing = OrderModel.objects.filter(idempotency_key=draft.idempotency_key).first()
            if existing is None:
                raise
            return _to_domain(existing), False
        return _to_domain(obj), True

    def get(self, order_id) -> Order:
        try:
            return _to_domain(OrderModel.objects.get(id=order_id))
        except OrderModel.DoesNotExist:
            raise OrderNotFound(order_id)

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        obj = OrderModel.objects.filter(idempotency_key=key).first()
        return _to_domain(obj) if obj else None

    def list_by_user(self, user_id: str, order_status: str | None = None, payment_status: str | None = None,
                     page: int = 1, page_size: int = 20) -> dict:
        """Page through a user's orders, newest first.

        Returns:
            dict: ``count``, ``page``, ``page_size`` and ``results`` (a list
            of ``Order``).
        """
        qs = OrderModel.objects.filter(user_id=user_id)
        if order_status:
            qs = qs.filter(order_status=order_status)
        if payment_status:
            qs = qs.filter(payment_status=payment_status)
        p = Paginator(qs.order_by("-created_at", "-internal_id"), page_size)
        page_obj = p.get_page(page)
        return {
            "count": p.count,
            "page": page_obj.number,
            "page_size": page_size,
            "results": [_to_domain(o) for o in page_obj.object_list],
        }

    def count_coupon_usage(self, user_id: str, code: str) -> int:
        coupons_per_order = OrderModel.objects.filter(user_id=user_id).values_list("applied_coupons", flat=True)
        return sum(1 for coupons in coupons_per_order if any(c.get("code") == code for c in coupons or []))

    def status_breakdown(self) -> dict:
        rows = OrderModel.objects.values("order_status").annotate(n=Count("id"))
        return {row["order_status"]: row["n"] for row in rows}

    @transaction.atomic
    def transition(self, order_id, new_status: OrderStatus, tracking_number: str | None = None,
                   notes: str | None = None) -> Order:
        """Advance ``order_status`` one step along the fulfillment path.

        Delivering a cash-on-delivery order also records the cash as
        collected (``payment_status=paid``).

        Raises:
            OrderNotFound: Unknown order.
            IllegalTransition: The move is not allowed from the current status.
        """
        obj = self._lock(order_id)
        ensure_transition(OrderStatus(obj.order_status), new_status)
        obj.order_status = new_status.value
        if tracking_number:
            obj.tracking_number = tracking_number
        if notes:
            obj.notes = notes
        if new_status == OrderStatus.DELIVERED:
            obj.delivered_at = timezone.now()
            if obj.payment_method == PaymentMethod.COD.value and obj.payment_status == PaymentStatus.PENDING.value:
                obj.payment_status = PaymentStatus.PAID.value
        obj.save()
        return _to_domain(obj)

    @transaction.atomic
    def begin_cancel(self, order_id) -> Order:
        """Check that an order may be cancelled and flag an owed refund.

        For an order paid online, ``payment_details["refund_status"]`` is set
        to ``pending`` and committed before the gateway is asked to refund,
        so a refund whose cancellation is never written stays visible.
        Returns the order as it was before the flag was set.
        """
        obj = self._lock(order_id)
        ensure_transition(OrderStatus(obj.order_status), OrderStatus.CANCELLED)
        before = _to_domain(obj)
        if before.payment_method == PaymentMethod.RAZORPAY and before.payment_status == PaymentStatus.PAID:
            obj.payment_details = {**before.payment_details, "refund_status": "pending"}
            obj.save()
        return before

    @transaction.atomic
    def update_payment_details(self, order_id, **details) -> Order:
        obj = self._lock(order_id)
        obj.payment_details = {**(obj.payment_details or {}), **details}
        obj.save()
        return _to_domain(obj)

    @transaction.atomic
    def cancel(self, order_id, reason: str, payment_status: Optional[PaymentStatus] = None,
               payment_details: Optional[dict] = None) -> Order:
        """Cancel an order that has not started processing.

        Args:
            reason: Free-text reason stored on the order.
            payment_status: New payment status (for example ``refunded``),
                or None to keep it.
            payment_details: Merged into the stored payment details.
        """
        obj = self._lock(order_id)
        ensure_transition(OrderStatus(obj.order_status), OrderStatus.CANCELLED)
        if payment_status is not None:
            ensure_payment_transition(PaymentStatus(obj.payment_status), payment_status)
            obj.payment_status = payment_status.value
        if payment_details:
            obj.payment_details = {**(obj.payment_details or {}), **payment_details}
        obj.order_status = OrderStatus.CANCELLED.value
        obj.cancelled_at = timezone.now()
        obj.cancel_reason = reason
        obj.save()
        return _to_domain(obj)

    def _lock(self, order_id) -> OrderModel:
        obj = OrderModel.objects.select_for_update().filter(id=order_id).first()
        if obj is None:
            raise OrderNotFound(order_id)
        return obj
