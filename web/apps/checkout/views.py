"""HTTP views for the checkout app.

Views are thin: they validate the payload (via Pydantic), map it to the
orchestrator's request objects and turn the classified ``CheckoutResult``
into a response. The caller is identified by the ``X-User-Id`` header set
by the authenticating edge proxy.

Idempotency: the ``Idempotency-Key`` header (or ``idempotency_key`` in the
body) names the checkout. Retries with the same key and payload get the
stored answer back with ``Idempotent-Replay: true``; a different payload
under the same key is a 409.
"""

from pydantic import ValidationError as DTOValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.domain import PaymentMethod

from .orchestrator import CheckoutRequest, CheckoutResult, VerifyRequest
from .providers import get_checkout_orchestrator
from .schemas import CheckoutDTO, VerifyPaymentDTO


def _user_id(request):
    return (request.headers.get("X-User-Id") or "").strip() or None


def _unauthenticated() -> Response:
    return Response({"detail": "AUTHENTICATION_REQUIRED"}, status=status.HTTP_401_UNAUTHORIZED)


def _invalid(exc: DTOValidationError) -> Response:
    body = {"success": False, "error": "INVALID_REQUEST", "error_class": "validation", "detail": str(exc)}
    return Response(body, status=status.HTTP_400_BAD_REQUEST)


def _respond(result: CheckoutResult) -> Response:
    resp = Response(result.body, status=result.http_status)
    if result.replayed:
        resp["Idempotent-Replay"] = "true"
    return resp


class CheckoutView(APIView):
    """Start a checkout.

    COD checkouts answer 201 with the created order. Online checkouts answer
    200 with ``status="awaiting_payment"`` and the gateway intent the client
    hands to the payment widget; the order is created by ``VerifyPaymentView``.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthenticated()
        try:
            dto = CheckoutDTO.model_validate(request.data)
        except DTOValidationError as e:
            return _invalid(e)

        req = CheckoutRequest(
            user_id=user_id,
            payment_method=PaymentMethod(dto.payment_method),
            shipping_address=dto.shipping_address,
            billing_address=dto.billing_address,
            customer_info=dto.customer_info,
            items=tuple((i.product_id, i.quantity) for i in dto.items),
            coupon_codes=tuple(c.code for c in dto.applied_coupons),
            client_discounts={c.code: c.discount_cents for c in dto.applied_coupons if c.discount_cents is not None},
            expected_total_cents=dto.expected_total_cents,
            notes=dto.notes,
            idempotency_key=request.headers.get("Idempotency-Key") or dto.idempotency_key,
        )
        return _respond(get_checkout_orchestrator().checkout(req))


class VerifyPaymentView(APIView):
    """Complete an online checkout with the payment widget's proof."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout_verify"

    def post(self, request):
        user_id = _user_id(request)
        if not user_id:
            return _unauthenticated()
        try:
            dto = VerifyPaymentDTO.model_validate(request.data)
        except DTOValidationError as e:
            return _invalid(e)

        req = VerifyRequest(
            user_id=user_id,
            intent_id=dto.intent_id,
            payment_id=dto.payment_id,
            signature=dto.signature,
            dismissed=dto.dismissed,
        )
        return _respond(get_checkout_orchestrator().verify(req))
