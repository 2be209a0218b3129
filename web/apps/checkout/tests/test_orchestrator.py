"""Checkout orchestrator against in-memory ports.

Every collaborator is a deterministic stub so each payment outcome
(success, cancellation, decline, untrusted proof, timeout) and each
retry path can be driven explicitly.
"""

import threading
from decimal import Decimal

import pytest

from apps.checkout.domain import AttemptState, IntentStatus, ProductInfo, payment_signature
from apps.checkout.orchestrator import (
    CheckoutConfig,
    CheckoutOrchestrator,
    CheckoutRequest,
    VerifyRequest,
    derive_idempotency_key,
)
from apps.checkout.pricing import ShippingRule
from apps.orders.domain import OrderStatus, PaymentMethod, PaymentStatus

from .conftest import ADDRESS, CUSTOMER, coupon

USER = "user-1"


def _request(method=PaymentMethod.COD, items=(("SHOE-RUN-1", 2),), **kw):
    kw.setdefault("idempotency_key", "key-0001")
    kw.setdefault("shipping_address", ADDRESS)
    return CheckoutRequest(user_id=USER, payment_method=method, customer_info=CUSTOMER, items=items, **kw)


@pytest.fixture()
def filled_cart(cart):
    cart.add(USER, "SHOE-RUN-1", 2, size="9")
    return cart


def _start_online(orchestrator, **kw):
    res = orchestrator.checkout(_request(PaymentMethod.RAZORPAY, **kw))
    assert res.http_status == 200
    assert res.body["status"] == "awaiting_payment"
    return res.body["intent_id"]


def _verify(orchestrator, intent_id, proof=None, **kw):
    if proof is not None:
        kw.update(payment_id=proof.payment_id, signature=proof.signature)
    return orchestrator.verify(VerifyRequest(user_id=USER, intent_id=intent_id, **kw))


# ---- COD ----
def test_cod_checkout_creates_order_and_clears_cart(orchestrator, filled_cart, orders, gateway):
    res = orchestrator.checkout(_request(coupon_codes=("SAVE100",)))

    assert res.http_status == 201
    assert res.body["success"] is True
    assert res.body["order_number"] == "ORD-00000001"
    assert res.body["pricing"] == {
        "subtotal_cents": 120_000,
        "shipping_cents": 0,
        "tax_cents": 21_600,
        "total_discount_cents": 10_000,
        "total_cents": 131_600,
    }
    (order,) = orders.orders.values()
    assert order.payment_status == PaymentStatus.PENDING
    assert order.items[0].name == "Road Runner"
    assert order.items[0].size == "9"
    assert filled_cart.get_snapshot(USER).is_empty
    assert gateway.intent_count == 0


def test_replay_returns_same_order(orchestrator, filled_cart, orders):
    first = orchestrator.checkout(_request())
    second = orchestrator.checkout(_request())

    assert second.http_status == 200
    assert second.replayed is True
    assert second.body["order_id"] == first.body["order_id"]
    assert len(orders.orders) == 1


def test_same_key_different_payload_conflicts(orchestrator, filled_cart):
    orchestrator.checkout(_request())
    res = orchestrator.checkout(_request(notes="x", items=(("SHOE-RUN-1", 3),)))
    assert res.http_status == 409
    assert res.body["error"] == "IDEMPOTENCY_CONFLICT"


def test_derived_key_is_stable_per_user_cart_and_method():
    k1 = derive_idempotency_key("u", [("B", 1), ("A", 2)], PaymentMethod.COD)
    assert k1 == derive_idempotency_key("u", [("A", 2), ("B", 1)], PaymentMethod.COD)
    assert k1 != derive_idempotency_key("u", [("A", 2), ("B", 1)], PaymentMethod.RAZORPAY)
    assert k1.startswith("chk_")


def test_concurrent_submissions_create_one_order(orchestrator, filled_cart, orders):
    results = []
    barrier = threading.Barrier(8)

    def submit():
        barrier.wait()
        results.append(orchestrator.checkout(_request()))

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(orders.orders) == 1
    assert [r.http_status for r in results].count(201) == 1
    assert all(r.http_status in (200, 201, 409) for r in results)


# ---- validation ----
def test_invalid_address_rejected_before_gateway(orchestrator, filled_cart, gateway, attempts):
    res = orchestrator.checkout(_request(PaymentMethod.RAZORPAY, shipping_address={**ADDRESS, "postal_code": "12"}))
    assert res.http_status == 400
    assert res.body["error"] == "INVALID_ADDRESS"
    assert res.body["field"] == "postal_code"
    assert gateway.intent_count == 0
    assert attempts.attempts == {}


def test_empty_cart(orchestrator, cart):
    res = orchestrator.checkout(_request(items=()))
    assert res.http_status == 400
    assert res.body["error"] == "EMPTY_CART"


def test_stale_cart_price(orchestrator, filled_cart, attempts):
    filled_cart.products["SHOE-RUN-1"] = ProductInfo("SHOE-RUN-1", "Road Runner", "/img/run1.jpg", 65_000)
    res = orchestrator.checkout(_request())
    assert res.http_status == 409
    assert res.body["error"] == "STALE_CART"
    assert res.body["products"] == ["SHOE-RUN-1"]
    # nothing happened, so the key is free again
    assert attempts.attempts == {}


def test_cart_changed_under_client(orchestrator, filled_cart):
    res = orchestrator.checkout(_request(items=(("SHOE-RUN-1", 1),)))
    assert res.http_status == 409
    assert res.body["error"] == "CART_CHANGED"


def test_out_of_stock_product(orchestrator, filled_cart):
    filled_cart.products["SHOE-RUN-1"] = ProductInfo("SHOE-RUN-1", "Road Runner", "/img/run1.jpg", 60_000, False)
    res = orchestrator.checkout(_request())
    assert res.body["error"] == "PRODUCT_UNAVAILABLE"


def test_client_discount_is_corrected_not_trusted(orchestrator, filled_cart):
    res = orchestrator.checkout(
        _request(coupon_codes=("SAVE100", "BOGUS"), client_discounts={"SAVE100": 50_000}, expected_total_cents=1)
    )
    assert res.http_status == 201
    assert res.body["total_cents"] == 131_600
    assert res.body["pricing_adjusted"] is True
    fields = {a["field"] for a in res.body["adjustments"]}
    assert fields == {"discount", "total"}
    assert res.body["coupons"]["rejected"] == [{"code": "BOGUS", "reason": "NOT_FOUND"}]


def test_coupon_usage_is_recorded(orchestrator, filled_cart, coupons):
    orchestrator.checkout(_request(coupon_codes=("SAVE100",)))
    assert coupons.lookup("SAVE100").usage_count == 1


def test_per_user_coupon_limit_across_orders(orchestrator, filled_cart):
    orchestrator.checkout(_request(coupon_codes=("SAVE100",)))
    filled_cart.add(USER, "SHOE-RUN-1", 2)
    res = orchestrator.checkout(_request(coupon_codes=("SAVE100",), idempotency_key="key-0002"))
    assert res.http_status == 201
    assert res.body["coupons"]["rejected"] == [{"code": "SAVE100", "reason": "ALREADY_USED"}]


# ---- online payments ----
def test_online_payment_success(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    assert orders.orders == {}
    assert not filled_cart.get_snapshot(USER).is_empty

    res = _verify(orchestrator, intent_id, gateway.pay(intent_id))

    assert res.http_status == 201
    (order,) = orders.orders.values()
    assert order.payment_status == PaymentStatus.PAID
    assert order.order_status == OrderStatus.CONFIRMED
    assert order.payment_details["intent_id"] == intent_id
    assert filled_cart.get_snapshot(USER).is_empty


def test_first_leg_replay_reuses_intent(orchestrator, filled_cart, gateway):
    first = _start_online(orchestrator)
    again = orchestrator.checkout(_request(PaymentMethod.RAZORPAY))
    assert again.replayed is True
    assert again.body["intent_id"] == first
    assert gateway.intent_count == 1


def test_widget_dismissed_is_not_an_error(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)

    res = _verify(orchestrator, intent_id, dismissed=True)

    assert res.http_status == 200
    assert res.body["success"] is False
    assert res.body["error_class"] == "payment_cancelled"
    assert orders.orders == {}
    assert filled_cart.clear_calls == 0
    # the customer can try again with the same intent
    res = _verify(orchestrator, intent_id, gateway.pay(intent_id))
    assert res.http_status == 201
    assert gateway.intent_count == 1


def test_gateway_reports_cancelled_intent(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    gateway.abandon(intent_id)
    proof_for_unpaid = payment_signature("unit-secret", intent_id, "pay_none")
    res = _verify(orchestrator, intent_id, payment_id="pay_none", signature=proof_for_unpaid)
    assert res.body["error_class"] == "payment_cancelled"
    assert orders.orders == {}


def test_declined_payment(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    gateway.decline(intent_id)

    res = _verify(orchestrator, intent_id, dismissed=True)

    assert res.http_status == 402
    assert res.body["error_class"] == "payment_failed"
    assert res.body["reason"] == "PAYMENT_DECLINED"
    assert "refunded within 5-7 business days" in res.body["message"]
    assert orders.orders == {}
    assert not filled_cart.get_snapshot(USER).is_empty


def test_forged_signature_never_creates_order(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    proof = gateway.pay(intent_id)

    res = _verify(orchestrator, intent_id, payment_id=proof.payment_id, signature="0" * 64)

    assert res.http_status == 402
    assert res.body["error_class"] == "verification_failed"
    assert res.body["reason"] == "SIGNATURE_MISMATCH"
    assert orders.orders == {}


def test_paid_amount_must_match_total(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    res = _verify(orchestrator, intent_id, gateway.pay(intent_id, amount_cents=100))
    assert res.body["reason"] == "AMOUNT_MISMATCH"
    assert orders.orders == {}


def test_retry_after_decline_starts_a_new_intent(orchestrator, filled_cart, gateway, attempts):
    first = _start_online(orchestrator)
    gateway.decline(first)
    _verify(orchestrator, first, dismissed=True)

    second = _start_online(orchestrator)

    assert second != first
    assert gateway.intent_count == 2
    assert attempts.attempts["key-0001"].generation == 1


def test_verify_for_someone_elses_intent(orchestrator, filled_cart):
    intent_id = _start_online(orchestrator)
    res = orchestrator.verify(VerifyRequest(user_id="intruder", intent_id=intent_id, dismissed=True))
    assert res.http_status == 400
    assert res.body["error"] == "UNKNOWN_INTENT"


def test_gateway_unavailable_on_intent_creation(orchestrator, filled_cart, gateway, attempts):
    gateway.unavailable = True
    res = orchestrator.checkout(_request(PaymentMethod.RAZORPAY))
    assert res.http_status == 503
    assert res.body["error"] == "UPSTREAM_UNAVAILABLE"
    assert attempts.attempts["key-0001"].state == AttemptState.CANCELLED

    gateway.unavailable = False
    assert _start_online(orchestrator)


def test_discount_is_capped_at_subtotal(orchestrator, cart, coupons):
    cart.add(USER, "SOCK-3", 1)
    coupons.coupons["ALLFREE"] = coupon("ALLFREE", value=100_000)
    res = orchestrator.checkout(_request(PaymentMethod.RAZORPAY, items=(("SOCK-3", 1),), coupon_codes=("ALLFREE",)))
    # shipping and tax on the pre-discount subtotal are still owed
    assert res.http_status == 200
    assert res.body["amount_cents"] == 5_000 + 3_600


def test_nothing_to_pay_online(cart, coupons, gateway, orders, attempts, clock):
    config = CheckoutConfig(tax_rate=Decimal("0"), shipping_rule=ShippingRule(flat_fee_cents=0))
    orchestrator = CheckoutOrchestrator(cart, cart, coupons, gateway, orders, attempts, config=config, clock=clock)
    cart.add(USER, "SOCK-3", 1)
    coupons.coupons["ALLFREE"] = coupon("ALLFREE", value=100_000)

    res = orchestrator.checkout(_request(PaymentMethod.RAZORPAY, items=(("SOCK-3", 1),), coupon_codes=("ALLFREE",)))

    assert res.http_status == 400
    assert res.body["error"] == "NOTHING_TO_PAY_ONLINE"
    assert gateway.intent_count == 0
    assert attempts.attempts == {}


# ---- unknown outcomes and reconciliation ----
def test_timeout_is_pending_then_reconciled(orchestrator, filled_cart, gateway, orders):
    intent_id = _start_online(orchestrator)
    proof = gateway.pay(intent_id)
    gateway.verify_timeout = True

    res = _verify(orchestrator, intent_id, proof)

    assert res.http_status == 202
    assert res.body["error_class"] == "payment_pending"
    assert orders.orders == {}

    # a retried checkout must not start a second payment
    again = orchestrator.checkout(_request(PaymentMethod.RAZORPAY))
    assert again.http_status == 202
    assert gateway.intent_count == 1

    gateway.verify_timeout = False
    report = orchestrator.reconcile()

    assert report.completed == 1
    (order,) = orders.orders.values()
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_details["source"] == "reconciliation"
    assert filled_cart.get_snapshot(USER).is_empty

    replay = _verify(orchestrator, intent_id, proof)
    assert replay.http_status == 200
    assert replay.body["order_id"] == str(order.id)


def test_signed_proof_before_capture_is_pending_not_failed(orchestrator, filled_cart, gateway, attempts, orders):
    intent_id = _start_online(orchestrator)
    proof = gateway.pay(intent_id)
    # gateway has not recorded the capture yet
    gateway.intents[intent_id]["status"] = IntentStatus.CREATED

    res = _verify(orchestrator, intent_id, proof)

    assert res.http_status == 202
    assert res.body["error_class"] == "payment_pending"
    assert attempts.attempts["key-0001"].state == AttemptState.UNKNOWN
    assert orders.orders == {}

    again = orchestrator.checkout(_request(PaymentMethod.RAZORPAY))
    assert again.http_status == 202
    assert gateway.intent_count == 1

    gateway.intents[intent_id]["status"] = IntentStatus.PAID
    report = orchestrator.reconcile()

    assert report.completed == 1
    (order,) = orders.orders.values()
    assert order.payment_status == PaymentStatus.PAID


def test_reconcile_marks_declined_unknown_attempt_failed(orchestrator, filled_cart, gateway, attempts, orders):
    intent_id = _start_online(orchestrator)
    proof = gateway.pay(intent_id)
    gateway.verify_timeout = True
    _verify(orchestrator, intent_id, proof)
    gateway.decline(intent_id)

    report = orchestrator.reconcile()

    assert report.failed == 1
    assert attempts.attempts["key-0001"].state == AttemptState.PAYMENT_FAILED
    assert orders.orders == {}


def test_reconcile_defers_when_gateway_unavailable(orchestrator, filled_cart, gateway, attempts):
    intent_id = _start_online(orchestrator)
    gateway.verify_timeout = True
    _verify(orchestrator, intent_id, gateway.pay(intent_id))
    gateway.unavailable = True

    report = orchestrator.reconcile()

    assert report.errors == 1
    assert attempts.attempts["key-0001"].state == AttemptState.UNKNOWN


def test_stale_awaiting_payment_is_reconciled(orchestrator, filled_cart, gateway, clock, orders):
    intent_id = _start_online(orchestrator)
    gateway.pay(intent_id)
    # far enough ahead that the attempt counts as stuck
    clock.advance(days=3650)

    report = orchestrator.reconcile()

    assert report.completed == 1
    assert len(orders.orders) == 1


def test_failed_cart_clear_is_retried_by_reconcile(orchestrator, filled_cart, attempts):
    filled_cart.fail_clears = 1

    res = orchestrator.checkout(_request())

    assert res.http_status == 201
    assert not filled_cart.get_snapshot(USER).is_empty
    assert len(attempts.pending_cart_clears()) == 1

    report = orchestrator.reconcile()

    assert report.carts_cleared == 1
    assert filled_cart.get_snapshot(USER).is_empty
    assert attempts.pending_cart_clears() == []
