from datetime import datetime, timedelta, timezone

import pytest

from apps.checkout.adapters import (
    CartServiceStub,
    CouponCatalogStub,
    InMemoryAttemptStore,
    InMemoryOrderStore,
    PaymentGatewayStub,
)
from apps.checkout.domain import CouponDefinition, CouponType, ProductInfo
from apps.checkout.orchestrator import CheckoutOrchestrator

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

PRODUCTS = [
    ProductInfo("SHOE-RUN-1", "Road Runner", "/img/run1.jpg", 60_000),
    ProductInfo("SHOE-TRL-2", "Trail Blazer", "/img/trl2.jpg", 45_000),
    ProductInfo("SOCK-3", "Crew Socks", "/img/sock3.jpg", 20_000),
]

ADDRESS = {
    "full_name": "Asha Rao",
    "line1": "12 MG Road, Indiranagar",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560038",
    "country": "India",
    "phone": "+91 98450 12345",
}

CUSTOMER = {"name": "Asha Rao", "email": "asha@example.com", "phone": "9845012345"}


def coupon(code, type=CouponType.FIXED, value=10_000, **kw):
    kw.setdefault("expires_at", NOW + timedelta(days=30))
    return CouponDefinition(code=code, type=type, value=value, **kw)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def cart():
    return CartServiceStub(PRODUCTS)


@pytest.fixture()
def gateway():
    return PaymentGatewayStub(secret="unit-secret")


@pytest.fixture()
def coupons():
    return CouponCatalogStub([
        coupon("SAVE100", value=10_000),
        coupon("TENOFF", type=CouponType.PERCENTAGE, value=10, max_discount_cents=5_000),
        coupon("SOLO", value=2_000, stackable=False),
    ])


@pytest.fixture()
def orders():
    return InMemoryOrderStore()


@pytest.fixture()
def attempts():
    return InMemoryAttemptStore()


@pytest.fixture()
def orchestrator(cart, coupons, gateway, orders, attempts, clock):
    return CheckoutOrchestrator(
        cart=cart, catalog=cart, coupons=coupons, gateway=gateway, orders=orders, attempts=attempts, clock=clock
    )
