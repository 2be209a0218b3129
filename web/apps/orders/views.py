"""HTTP views for the orders app.

Read endpoints serve the customer's order pages (list, detail, invoice);
the status endpoint is the fulfillment actor's entry point and the cancel
endpoint lets a customer cancel an order that has not started processing.

Identity comes from the edge proxy: ``X-User-Id`` names the caller and
``X-User-Role: admin`` marks back-office staff. Customers only ever see
their own orders; someone else's order answers 404, never 403, so order ids
cannot be probed.
"""

from pydantic import ValidationError as DTOValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.checkout.errors import UpstreamUnavailable
from apps.checkout.providers import get_fulfillment_service

from .domain import IllegalTransition, OrderNotFound, OrderStatus
from .invoice import build_invoice
from .repository import OrderRepository
from .schemas import CancelOrderDTO, OrderReadDTO, OrdersQuery, OrderStatusUpdateDTO
from .service import RefundFailed

NOT_FOUND = {"detail": "NOT_FOUND"}


def _caller(request):
    user_id = (request.headers.get("X-User-Id") or "").strip() or None
    is_admin = (request.headers.get("X-User-Role") or "").strip().lower() == "admin"
    return user_id, is_admin


def _order_json(order) -> dict:
    return OrderReadDTO.from_order(order).model_dump(mode="json")


def _domain_error(exc: ValueError) -> Response:
    if isinstance(exc, OrderNotFound):
        return Response(NOT_FOUND, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, IllegalTransition):
        body = {"detail": str(exc), "current": exc.current, "requested": exc.requested}
        return Response(body, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, RefundFailed):
        return Response({"detail": str(exc), "reason": exc.reason}, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, UpstreamUnavailable):
        return Response({"detail": exc.code}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


class OwnedOrderMixin:
    """Resolve ``oid`` to an order visible to the caller, or None."""

    def load(self, request, oid):
        user_id, is_admin = _caller(request)
        try:
            order = OrderRepository().get(oid)
        except OrderNotFound:
            return None
        if is_admin or (user_id and order.user_id == user_id):
            return order
        return None


class OrdersCollectionView(APIView):
    """List the caller's orders, newest first, with optional status filters."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        user_id, _ = _caller(request)
        if not user_id:
            return Response({"detail": "AUTHENTICATION_REQUIRED"}, status=status.HTTP_401_UNAUTHORIZED)
        try:
            q = OrdersQuery.model_validate(request.query_params.dict())
        except DTOValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        page = OrderRepository().list_by_user(
            user_id, order_status=q.order_status, payment_status=q.payment_status, page=q.page, page_size=q.page_size
        )
        page["results"] = [_order_json(o) for o in page["results"]]
        return Response(page, status=200)


class RetrieveOrderView(OwnedOrderMixin, APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = self.load(request, oid)
        if order is None:
            return Response(NOT_FOUND, status=status.HTTP_404_NOT_FOUND)
        return Response(_order_json(order), status=200)


class OrderInvoiceView(OwnedOrderMixin, APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = self.load(request, oid)
        if order is None:
            return Response(NOT_FOUND, status=status.HTTP_404_NOT_FOUND)
        return Response(build_invoice(order).as_dict(), status=200)


class CancelOrderView(OwnedOrderMixin, APIView):
    """Cancel a pending or confirmed order; paid orders are refunded first."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def post(self, request, oid):
        order = self.load(request, oid)
        if order is None:
            return Response(NOT_FOUND, status=status.HTTP_404_NOT_FOUND)
        try:
            dto = CancelOrderDTO.model_validate(request.data or {})
        except DTOValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        try:
            order = get_fulfillment_service().cancel(order.id, dto.reason)
        except ValueError as e:
            return _domain_error(e)
        return Response(_order_json(order), status=200)


class OrderStatusView(APIView):
    """Fulfillment actor moves an order along its lifecycle (staff only)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def post(self, request, oid):
        _, is_admin = _caller(request)
        if not is_admin:
            return Response({"detail": "FORBIDDEN"}, status=status.HTTP_403_FORBIDDEN)
        try:
            dto = OrderStatusUpdateDTO.model_validate(request.data)
        except DTOValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        try:
            order = get_fulfillment_service().advance(
                oid, OrderStatus(dto.order_status), tracking_number=dto.tracking_number, notes=dto.notes
            )
        except ValueError as e:
            return _domain_error(e)
        return Response(_order_json(order), status=200)


class OrderStatsView(APIView):
    """Order counts per status (staff only)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        _, is_admin = _caller(request)
        if not is_admin:
            return Response({"detail": "FORBIDDEN"}, status=status.HTTP_403_FORBIDDEN)
        breakdown = OrderRepository().status_breakdown()
        return Response({"status_breakdown": breakdown, "total": sum(breakdown.values())}, status=200)
