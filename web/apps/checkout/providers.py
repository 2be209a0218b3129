"""Service provider helpers wiring the checkout orchestrator with its ports.

``get_checkout_orchestrator`` returns an orchestrator backed by the
database stores and either the HTTP clients (``settings.USE_HTTP_ADAPTERS``)
or process-wide in-memory stubs for the Cart Service and the payment
gateway, suitable for tests and local development.
"""

from datetime import timedelta
from decimal import Decimal
from functools import lru_cache

from django.conf import settings

from apps.orders.repository import OrderRepository
from apps.orders.service import FulfillmentService

from . import pricing
from .adapters import CartServiceStub, PaymentGatewayStub
from .http_adapters import HttpCartServiceClient, HttpPaymentGatewayClient
from .idempotency import DjangoAttemptStore
from .orchestrator import CheckoutConfig, CheckoutOrchestrator
from .repository import DjangoCouponCatalog


@lru_cache(maxsize=1)
def stub_cart_service() -> CartServiceStub:
    return CartServiceStub()


@lru_cache(maxsize=1)
def stub_payment_gateway() -> PaymentGatewayStub:
    return PaymentGatewayStub(secret=getattr(settings, "PAYMENTS_KEY_SECRET", "stub-secret"))


def reset_stubs() -> None:
    stub_cart_service.cache_clear()
    stub_payment_gateway.cache_clear()


def _use_http() -> bool:
    return bool(getattr(settings, "USE_HTTP_ADAPTERS", True))


def get_cart_service():
    return HttpCartServiceClient() if _use_http() else stub_cart_service()


def get_payment_gateway():
    return HttpPaymentGatewayClient() if _use_http() else stub_payment_gateway()


def checkout_config() -> CheckoutConfig:
    """Build the pricing and gateway configuration from Django settings."""
    return CheckoutConfig(
        currency=getattr(settings, "CHECKOUT_CURRENCY", "INR"),
        tax_rate=Decimal(str(getattr(settings, "CHECKOUT_TAX_RATE", pricing.DEFAULT_TAX_RATE))),
        shipping_rule=pricing.ShippingRule(
            free_threshold_cents=getattr(
                settings, "CHECKOUT_FREE_SHIPPING_THRESHOLD_CENTS", pricing.DEFAULT_FREE_SHIPPING_THRESHOLD_CENTS
            ),
            flat_fee_cents=getattr(settings, "CHECKOUT_FLAT_SHIPPING_CENTS", pricing.DEFAULT_FLAT_SHIPPING_CENTS),
        ),
        gateway_key_id=getattr(settings, "PAYMENTS_KEY_ID", ""),
        reconcile_after=timedelta(seconds=getattr(settings, "CHECKOUT_RECONCILE_AFTER_SECS", 900)),
    )


def get_checkout_orchestrator() -> CheckoutOrchestrator:
    cart = get_cart_service()
    return CheckoutOrchestrator(
        cart=cart,
        catalog=cart,
        coupons=DjangoCouponCatalog(),
        gateway=get_payment_gateway(),
        orders=OrderRepository(),
        attempts=DjangoAttemptStore(),
        config=checkout_config(),
    )


def get_fulfillment_service() -> FulfillmentService:
    return FulfillmentService(orders=OrderRepository(), gateway=get_payment_gateway())
