import httpx
import pytest

from apps.checkout import http_adapters
from apps.checkout.domain import IntentStatus, PaymentProof, VerificationOutcome, payment_signature
from apps.checkout.errors import CheckoutConflict, UpstreamUnavailable
from apps.checkout.http_adapters import (
    CircuitBreaker,
    CircuitOpen,
    HttpCartServiceClient,
    HttpPaymentGatewayClient,
)
from gateway.middleware import REQUEST_ID_CTX

SECRET = "http-secret"


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 2
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    http_adapters._cart_cb.on_success()
    http_adapters._payments_cb.on_success()
    yield
    http_adapters._cart_cb.on_success()
    http_adapters._payments_cb.on_success()


def _gateway():
    return HttpPaymentGatewayClient(base_url="http://pay", key_secret=SECRET, timeout=1.0)


def _proof(intent_id, payment_id="pay_1"):
    return PaymentProof(payment_id, payment_signature(SECRET, intent_id, payment_id))


def test_cart_snapshot_retries_on_5xx(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"items": [{"product_id": "P1", "quantity": 2, "unit_price_cents": 999}]})

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)

    snap = HttpCartServiceClient(base_url="http://cart", timeout=1.0).get_snapshot("u1")

    assert calls["n"] == 2
    assert snap.lines[0].product_id == "P1"
    assert snap.lines[0].unit_price_cents == 999


def test_cart_gives_up_after_retries(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, **kwargs):
        calls["n"] += 1
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)

    with pytest.raises(UpstreamUnavailable) as e:
        HttpCartServiceClient(base_url="http://cart", timeout=1.0).get_snapshot("u1")
    assert e.value.service == "cart"
    assert calls["n"] == 3


def test_unexpected_client_error_is_not_retried(monkeypatch):
    calls = {"n": 0}

    def fake_post(self, url, **kwargs):
        calls["n"] += 1
        return httpx.Response(400, json={"detail": "bad"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    with pytest.raises(UpstreamUnavailable):
        HttpCartServiceClient(base_url="http://cart", timeout=1.0).lookup_products(["P1"])
    assert calls["n"] == 1


def test_clear_accepts_missing_cart(monkeypatch):
    monkeypatch.setattr(httpx.Client, "delete", lambda self, url, **kw: httpx.Response(404), raising=True)
    HttpCartServiceClient(base_url="http://cart", timeout=1.0).clear("u1")


def test_create_intent_sends_idempotency_key_and_request_id(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        seen.update(url=url, json=json, headers=headers)
        return httpx.Response(201, json={"intent_id": "pi_1", "amount_cents": 500, "currency": "INR", "status": "created"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    token = REQUEST_ID_CTX.set("req-abc")
    try:
        intent = _gateway().create_intent(500, "INR", "chk_1:0")
    finally:
        REQUEST_ID_CTX.reset(token)

    assert intent.intent_id == "pi_1"
    assert seen["url"] == "http://pay/intents"
    assert seen["headers"]["Idempotency-Key"] == "chk_1:0"
    assert seen["headers"]["X-Request-ID"] == "req-abc"
    assert seen["json"] == {"amount_cents": 500, "currency": "INR"}


def test_create_intent_key_reused_with_other_amount(monkeypatch):
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: httpx.Response(409, json={}), raising=True)
    with pytest.raises(CheckoutConflict) as e:
        _gateway().create_intent(500, "INR", "chk_1:0")
    assert str(e.value) == "IDEMPOTENCY_CONFLICT"


def test_verify_rejects_bad_signature_without_calling_gateway(monkeypatch):
    def fake_get(self, url, **kwargs):
        raise AssertionError("gateway must not be called")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)

    res = _gateway().verify("pi_1", PaymentProof("pay_1", "f" * 64))

    assert res.outcome == VerificationOutcome.FAILED
    assert res.reason == "SIGNATURE_MISMATCH"


def test_verify_timeout_is_unknown_not_failed(monkeypatch):
    def fake_get(self, url, **kwargs):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)

    res = _gateway().verify("pi_1", _proof("pi_1"))

    assert res.outcome == VerificationOutcome.UNKNOWN
    assert res.reason == "GATEWAY_TIMEOUT"


@pytest.mark.parametrize(
    "intent, outcome, reason",
    [
        ({"status": "paid", "payment_id": "pay_1", "amount_cents": 700}, VerificationOutcome.VERIFIED, None),
        ({"status": "paid", "payment_id": "pay_other", "amount_cents": 700}, VerificationOutcome.FAILED, "PAYMENT_MISMATCH"),
        ({"status": "failed", "payment_id": None, "amount_cents": 700}, VerificationOutcome.FAILED, "PAYMENT_DECLINED"),
        ({"status": "cancelled", "payment_id": None, "amount_cents": 700}, VerificationOutcome.CANCELLED, None),
        ({"status": "refunded", "payment_id": "pay_1", "amount_cents": 700}, VerificationOutcome.FAILED, "PAYMENT_REFUNDED"),
        # captured on the gateway side but not recorded yet
        ({"status": "created", "payment_id": None, "amount_cents": 700}, VerificationOutcome.UNKNOWN, "PAYMENT_NOT_CAPTURED"),
        ({"status": "authorized", "payment_id": "pay_1", "amount_cents": 700}, VerificationOutcome.UNKNOWN, "GATEWAY_STATUS_UNKNOWN"),
    ],
)
def test_verify_maps_gateway_state(monkeypatch, intent, outcome, reason):
    monkeypatch.setattr(
        httpx.Client, "get", lambda self, url, **kw: httpx.Response(200, json={"intent_id": "pi_1", **intent}), raising=True
    )
    res = _gateway().verify("pi_1", _proof("pi_1"))
    assert res.outcome == outcome
    assert res.reason == reason
    if outcome == VerificationOutcome.VERIFIED:
        assert res.amount_cents == 700


def test_query_status_of_unknown_intent(monkeypatch):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, **kw: httpx.Response(404, json={}), raising=True)
    assert _gateway().query_status("pi_missing") == IntentStatus.UNKNOWN


def test_unrecognized_status_is_unknown_and_logged(monkeypatch):
    logged = []
    monkeypatch.setattr(http_adapters.logger, "error", lambda msg, **kw: logged.append((msg, kw["extra"])))
    monkeypatch.setattr(
        httpx.Client, "get", lambda self, url, **kw: httpx.Response(200, json={"intent_id": "pi_1", "status": "on_hold"}),
        raising=True,
    )

    assert _gateway().query_status("pi_1") == IntentStatus.UNKNOWN
    assert logged == [("unrecognized intent status", {"service": "payments", "intent_id": "pi_1", "status": "on_hold"})]


def test_refund_rejected(monkeypatch):
    monkeypatch.setattr(
        httpx.Client, "post", lambda self, url, **kw: httpx.Response(409, json={"detail": "NOT_REFUNDABLE"}), raising=True
    )
    res = _gateway().refund("pi_1", 500)
    assert res.success is False
    assert res.failure_reason == "NOT_REFUNDABLE"


def test_breaker_opens_and_short_circuits(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, **kwargs):
        calls["n"] += 1
        return httpx.Response(503)

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    monkeypatch.setattr(http_adapters, "_cart_cb", CircuitBreaker("cart", fail_threshold=2, reset_timeout=60))
    client = HttpCartServiceClient(base_url="http://cart", timeout=1.0)

    for _ in range(2):
        with pytest.raises(UpstreamUnavailable):
            client.get_snapshot("u1")
    made = calls["n"]

    with pytest.raises(UpstreamUnavailable):
        client.get_snapshot("u1")
    assert calls["n"] == made
    assert http_adapters._cart_cb.state == "OPEN"


def test_breaker_half_open_probe():
    cb = CircuitBreaker("x", fail_threshold=1, reset_timeout=0)
    cb.on_failure()
    assert cb.before_call() == "HALF_OPEN"
    # only one probe at a time
    with pytest.raises(CircuitOpen):
        cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"
    assert cb.before_call() == "CLOSED"
