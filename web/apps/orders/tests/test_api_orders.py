import pytest

from apps.checkout import providers
from apps.orders.domain import PaymentMethod
from apps.orders.models import OrderModel

from .conftest import make_draft

OWNER = {"HTTP_X_USER_ID": "user-7"}
STRANGER = {"HTTP_X_USER_ID": "user-8"}
ADMIN = {"HTTP_X_USER_ID": "ops-1", "HTTP_X_USER_ROLE": "admin"}


def _url(order, suffix=""):
    return f"/api/orders/{order.id}/{suffix}"


@pytest.mark.django_db
def test_list_own_orders(client, repo):
    repo.create(make_draft("k-1"))
    repo.create(make_draft("k-2", method=PaymentMethod.RAZORPAY))
    repo.create(make_draft("k-3", user_id="user-8"))

    r = client.get("/api/orders/", **OWNER)

    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert all(o["order_number"].startswith("ORD-") for o in body["results"])
    assert body["results"][0]["payment_method"] == "razorpay"
    assert body["results"][0]["items"][0]["line_total_cents"] == 60_000
    assert {o["user_id"] for o in body["results"]} == {"user-7"}


@pytest.mark.django_db
def test_list_filters_and_validation(client, repo):
    repo.create(make_draft("k-1"))
    repo.create(make_draft("k-2", method=PaymentMethod.RAZORPAY))

    r = client.get("/api/orders/?payment_status=paid", **OWNER)
    assert [o["order_status"] for o in r.json()["results"]] == ["confirmed"]

    assert client.get("/api/orders/?page_size=500", **OWNER).status_code == 400
    assert client.get("/api/orders/?order_status=lost", **OWNER).status_code == 400
    assert client.get("/api/orders/").status_code == 401


@pytest.mark.django_db
def test_detail_is_hidden_from_other_users(client, repo):
    order, _ = repo.create(make_draft())

    assert client.get(_url(order), **OWNER).status_code == 200
    assert client.get(_url(order), **ADMIN).status_code == 200
    r = client.get(_url(order), **STRANGER)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_invoice(client, repo):
    order, _ = repo.create(make_draft())

    r = client.get(_url(order, "invoice/"), **OWNER)

    assert r.status_code == 200
    inv = r.json()
    assert inv["invoice_number"] == "INV-00000001"
    assert inv["lines"][0]["description"] == "Road Runner (9, Blue)"
    assert inv["total_cents"] == 113_000
    assert inv["coupons"] == [{"code": "SAVE100", "discount_cents": 10_000}]
    assert inv["payment_reference"] is None


@pytest.mark.django_db
def test_detail_of_paid_order_carries_payment_reference(client, repo):
    order, _ = repo.create(make_draft(method=PaymentMethod.RAZORPAY))

    body = client.get(_url(order), **OWNER).json()

    assert body["user_id"] == "user-7"
    assert body["payment_details"] == {"intent_id": "pi_test", "payment_id": "pay_test"}
    inv = client.get(_url(order, "invoice/"), **OWNER).json()
    assert inv["payment_reference"] == "pay_test"


@pytest.mark.django_db
def test_status_update_is_staff_only(client, repo):
    order, _ = repo.create(make_draft())
    payload = {"order_status": "confirmed"}

    r = client.post(_url(order, "status/"), data=payload, content_type="application/json", **OWNER)
    assert r.status_code == 403

    r = client.post(_url(order, "status/"), data=payload, content_type="application/json", **ADMIN)
    assert r.status_code == 200
    assert r.json()["order_status"] == "confirmed"


@pytest.mark.django_db
def test_illegal_status_change_is_409(client, repo):
    order, _ = repo.create(make_draft())
    r = client.post(_url(order, "status/"), data={"order_status": "delivered"}, content_type="application/json", **ADMIN)
    assert r.status_code == 409
    assert r.json() == {"detail": "ILLEGAL_TRANSITION", "current": "pending", "requested": "delivered"}


@pytest.mark.django_db
def test_cod_delivery_marks_paid(client, repo):
    order, _ = repo.create(make_draft())
    for status, extra in (("confirmed", {}), ("processing", {}), ("shipped", {"tracking_number": "AWB9"}),
                          ("delivered", {})):
        r = client.post(_url(order, "status/"), data={"order_status": status, **extra},
                        content_type="application/json", **ADMIN)
        assert r.status_code == 200
    body = r.json()
    assert body["payment_status"] == "paid"
    assert body["tracking_number"] == "AWB9"
    assert body["delivered_at"] is not None


@pytest.mark.django_db
def test_customer_cancels_paid_order(client, repo):
    gateway = providers.stub_payment_gateway()
    intent = gateway.create_intent(113_000, "INR", "k-paid:0")
    gateway.pay(intent.intent_id)
    order, _ = repo.create(make_draft(
        "k-paid", method=PaymentMethod.RAZORPAY, payment_details={"intent_id": intent.intent_id},
    ))

    r = client.post(_url(order, "cancel/"), data={"reason": "ordered twice"}, content_type="application/json", **OWNER)

    assert r.status_code == 200
    body = r.json()
    assert body["order_status"] == "cancelled"
    assert body["payment_status"] == "refunded"
    assert body["cancel_reason"] == "ordered twice"
    assert len(gateway.refunds) == 1


@pytest.mark.django_db
def test_cancel_refund_rejected(client, repo):
    order, _ = repo.create(make_draft(
        "k-paid", method=PaymentMethod.RAZORPAY, payment_details={"intent_id": "pi_unknown"},
    ))

    r = client.post(_url(order, "cancel/"), content_type="application/json", **OWNER)

    assert r.status_code == 409
    assert r.json() == {"detail": "REFUND_FAILED", "reason": "NOT_REFUNDABLE"}
    assert OrderModel.objects.get(id=order.id).order_status == "confirmed"


@pytest.mark.django_db
def test_stranger_cannot_cancel(client, repo):
    order, _ = repo.create(make_draft())
    r = client.post(_url(order, "cancel/"), content_type="application/json", **STRANGER)
    assert r.status_code == 404


@pytest.mark.django_db
def test_stats_for_staff(client, repo):
    repo.create(make_draft("k-1"))
    repo.create(make_draft("k-2", method=PaymentMethod.RAZORPAY))

    assert client.get("/api/orders/stats/", **OWNER).status_code == 403
    r = client.get("/api/orders/stats/", **ADMIN)
    assert r.json() == {"status_breakdown": {"pending": 1, "confirmed": 1}, "total": 2}
