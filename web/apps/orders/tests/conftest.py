import pytest

from apps.orders.domain import OrderDraft, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from apps.orders.repository import OrderRepository

ADDRESS = {
    "full_name": "Ravi Kumar",
    "line1": "4 Park Street",
    "line2": "",
    "city": "Kolkata",
    "state": "West Bengal",
    "postal_code": "700016",
    "country": "India",
    "phone": "+919830012345",
}


def make_draft(key="order-key-1", user_id="user-7", method=PaymentMethod.COD, **kw):
    paid = method == PaymentMethod.RAZORPAY
    defaults = dict(
        idempotency_key=key,
        user_id=user_id,
        items=(
            OrderItem("SHOE-RUN-1", "Road Runner", "/img/run1.jpg", 60_000, 1, size="9", color="Blue"),
            OrderItem("SOCK-3", "Crew Socks", "/img/sock3.jpg", 20_000, 2),
        ),
        subtotal_cents=100_000,
        shipping_cents=5_000,
        tax_cents=18_000,
        total_discount_cents=10_000,
        total_cents=113_000,
        currency="INR",
        applied_coupons=({"code": "SAVE100", "type": "fixed", "value": 10_000, "discount_cents": 10_000,
                          "scope_items": []},),
        shipping_address=ADDRESS,
        billing_address=ADDRESS,
        customer_info={"name": "Ravi Kumar", "email": "ravi@example.com", "phone": ""},
        payment_method=method,
        payment_status=PaymentStatus.PAID if paid else PaymentStatus.PENDING,
        order_status=OrderStatus.CONFIRMED if paid else OrderStatus.PENDING,
        payment_details={"intent_id": "pi_test", "payment_id": "pay_test"} if paid else {},
    )
    defaults.update(kw)
    return OrderDraft(**defaults)


@pytest.fixture()
def repo():
    return OrderRepository()
