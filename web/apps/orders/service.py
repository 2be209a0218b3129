"""Post-creation order lifecycle: fulfillment and cancellation.

Cancelling an order that was paid online refunds it through the payment
gateway first; the order is only marked ``cancelled``/``refunded`` once the
gateway accepted the refund. The owed refund is flagged in
``payment_details["refund_status"]`` before the gateway call.
"""

import logging
from typing import Optional

from django.db import DatabaseError

from .domain import Order, OrderStatus, PaymentMethod, PaymentStatus
from .repository import OrderRepository

logger = logging.getLogger(__name__)


class RefundFailed(ValueError):
    def __init__(self, reason: str):
        super().__init__("REFUND_FAILED")
        self.reason = reason


class FulfillmentService:
    """Advance and cancel orders.

    Args:
        orders: Order store.
        gateway: Payment gateway port; ``refund`` and ``query_status`` are used.
    """

    def __init__(self, orders: OrderRepository, gateway):
        self.orders = orders
        self.gateway = gateway

    def advance(self, order_id, new_status: OrderStatus, tracking_number: Optional[str] = None,
                notes: Optional[str] = None) -> Order:
        if new_status == OrderStatus.CANCELLED:
            return self.cancel(order_id, notes or "cancelled by fulfillment")
        order = self.orders.transition(order_id, new_status, tracking_number=tracking_number, notes=notes)
        logger.info(
            "order status changed",
            extra={"order_id": str(order.id), "order_status": order.order_status.value,
                   "payment_status": order.payment_status.value},
        )
        return order

    def cancel(self, order_id, reason: str) -> Order:
        """Cancel a pending or confirmed order, refunding online payments.

        An owed refund is flagged on the order before the gateway is called.
        If the cancellation cannot be written after the gateway refunded, the
        flag stays ``pending`` and a retried cancel completes it.

        Raises:
            IllegalTransition: The order is already processing or beyond.
            RefundFailed: The gateway refused the refund; the order stays
                paid with ``refund_status`` ``failed``.
            UpstreamUnavailable: The gateway could not be reached.
        """
        before = self.orders.begin_cancel(order_id)
        if before.payment_method != PaymentMethod.RAZORPAY or before.payment_status != PaymentStatus.PAID:
            order = self.orders.cancel(order_id, reason)
        else:
            refund_id = self._refund(before)
            try:
                order = self.orders.cancel(
                    order_id, reason, payment_status=PaymentStatus.REFUNDED,
                    payment_details={"refund_status": "refunded", "refund_id": refund_id},
                )
            except DatabaseError:
                logger.error(
                    "refund issued but cancellation not saved",
                    extra={"order_id": str(before.id), "intent_id": before.payment_details.get("intent_id"),
                           "refund_id": refund_id},
                )
                raise
        logger.info(
            "order cancelled",
            extra={"order_id": str(order.id), "payment_status": order.payment_status.value, "reason": reason},
        )
        return order

    def _refund(self, order: Order) -> Optional[str]:
        intent_id = order.payment_details.get("intent_id")
        result = self.gateway.refund(intent_id, order.total_cents)
        if result.success:
            logger.info("order refunded", extra={"order_id": str(order.id), "refund_id": result.refund_id})
            return result.refund_id
        # an earlier attempt may have refunded without recording it
        if order.payment_details.get("refund_status") == "pending" and self.gateway.query_status(intent_id) == "refunded":
            logger.warning(
                "refund already issued; completing cancellation",
                extra={"order_id": str(order.id), "intent_id": intent_id},
            )
            return order.payment_details.get("refund_id")
        logger.error("refund rejected by gateway", extra={"order_id": str(order.id), "reason": result.failure_reason})
        self.orders.update_payment_details(order.id, refund_status="failed")
        raise RefundFailed(result.failure_reason or "REFUND_REJECTED")
