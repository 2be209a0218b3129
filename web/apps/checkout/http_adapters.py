"""HTTP clients for the Cart Service and the payment gateway.

Both clients go through ``_send`` which adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
  by the gateway middleware.
- A circuit breaker per downstream service (cart, payments) so an unhealthy
  dependency is not hammered, with a single HALF_OPEN probe after a timeout.
- Retries with exponential backoff for transport errors and 5xx.

Responses in a call's ``expected`` statuses are business outcomes and count
as breaker successes. Anything else that survives the retries surfaces as
``UpstreamUnavailable``.
"""

import logging
import threading
import time
from typing import Dict, Iterable, Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import (
    CartLine,
    CartSnapshot,
    IntentStatus,
    PaymentIntent,
    PaymentProof,
    ProductInfo,
    RefundResult,
    VerificationOutcome,
    VerificationResult,
    signature_matches,
)
from .errors import CheckoutConflict, UpstreamUnavailable

logger = logging.getLogger(__name__)


# ---------------- Circuit Breaker ---------------- #

class CircuitOpen(RuntimeError):
    pass


class CircuitBreaker:
    """Thread-safe circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    - CLOSED -> OPEN once consecutive failures reach ``fail_threshold``.
    - OPEN -> HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN lets exactly one probe through; its success closes the
      breaker, its failure opens it again.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Admit a call or raise ``CircuitOpen``. Returns the state at call time."""
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen(self.name)
            if st == "HALF_OPEN":
                if self._probe_in_flight:
                    raise CircuitOpen(self.name)
                self._probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._probe_in_flight = False


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


_cart_cb = _breaker("cart")
_payments_cb = _breaker("payments")


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers with ``X-Request-ID`` (when a request is in scope) plus ``extra``."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return ``(max_retries, backoff_base_seconds, max_sleep_seconds)``."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _send(breaker: CircuitBreaker, method: str, url: str, expected, timeout: float,
          json=None, headers: Optional[dict] = None) -> httpx.Response:
    """Call ``url`` with retries under ``breaker``.

    Args:
        breaker: Circuit breaker of the target service.
        method: ``get``, ``post`` or ``delete``.
        expected: Status codes returned to the caller as business outcomes.

    Returns:
        httpx.Response: A response whose status is in ``expected``.

    Raises:
        UpstreamUnavailable: Circuit open, transport errors or 5xx after the
            retries, or an unexpected status.
    """
    max_retries, backoff, max_sleep = _retry_policy()
    try:
        state = breaker.before_call()
    except CircuitOpen:
        logger.warning("circuit open; call short-circuited", extra={"service": breaker.name, "url": url})
        raise UpstreamUnavailable(breaker.name)

    hdrs = _request_headers({**(headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})
    kwargs = {"headers": hdrs}
    if json is not None:
        kwargs["json"] = json
    tries = 0
    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp, exc = None, None
                try:
                    resp = getattr(client, method)(url, **kwargs)
                    if resp.status_code in expected:
                        breaker.on_success()
                        return resp
                    if not _should_retry(resp, None):
                        # The service answered; a contract problem is not an outage
                        breaker.on_success()
                        logger.error("unexpected upstream status",
                                     extra={"service": breaker.name, "url": url, "status": resp.status_code})
                        raise UpstreamUnavailable(breaker.name)
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                hdrs["X-Retry-Count"] = str(tries)
                if tries > max_retries:
                    breaker.on_failure()
                    logger.warning(
                        "upstream call failed after retries",
                        extra={"service": breaker.name, "url": url, "tries": tries,
                               "error": repr(exc) if exc else resp.status_code},
                    )
                    raise UpstreamUnavailable(breaker.name) from exc

                time.sleep(min(backoff * (2 ** (tries - 1)), max_sleep))
    finally:
        breaker.on_finish()


# ---------------- Cart Service ---------------- #

class HttpCartServiceClient:
    """Cart Service client; also answers catalog lookups."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.CART_SERVICE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def get_snapshot(self, user_id: str) -> CartSnapshot:
        resp = _send(_cart_cb, "get", f"{self.base_url}/carts/{user_id}", (200,), self.timeout)
        lines = tuple(
            CartLine(
                product_id=str(it["product_id"]),
                quantity=int(it["quantity"]),
                unit_price_cents=int(it["unit_price_cents"]),
                size=it.get("size"),
                color=it.get("color"),
            )
            for it in resp.json().get("items", [])
        )
        return CartSnapshot(user_id=user_id, lines=lines)

    def clear(self, user_id: str) -> None:
        # 404: nothing left to clear
        _send(_cart_cb, "delete", f"{self.base_url}/carts/{user_id}", (200, 204, 404), self.timeout)

    def lookup_products(self, product_ids: Iterable[str]) -> Dict[str, ProductInfo]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        resp = _send(_cart_cb, "post", f"{self.base_url}/products/lookup", (200,), self.timeout, json={"ids": ids})
        return {
            str(p["product_id"]): ProductInfo(
                product_id=str(p["product_id"]),
                name=p["name"],
                image=p.get("image", ""),
                price_cents=int(p["price_cents"]),
                in_stock=bool(p.get("in_stock", True)),
            )
            for p in resp.json().get("products", [])
        }


# ---------------- Payment gateway ---------------- #

def _intent_status(data: dict, default: Optional[str] = None) -> IntentStatus:
    """Parse the gateway's status; values this client does not know are ``UNKNOWN``."""
    raw = data.get("status", default)
    try:
        return IntentStatus(raw)
    except ValueError:
        logger.error("unrecognized intent status", extra={"service": "payments", "intent_id": data.get("intent_id"), "status": raw})
        return IntentStatus.UNKNOWN


class HttpPaymentGatewayClient:
    """Client for the payment gateway (Razorpay-style orders API).

    ``verify`` checks the proof signature locally with the shared key secret
    and then fetches the intent from the gateway: the payment must be
    captured, match the proof's payment id, and carry the intent's amount.
    """

    def __init__(self, base_url: str | None = None, key_secret: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.PAYMENTS_BASE_URL).rstrip("/")
        self.key_secret = key_secret if key_secret is not None else settings.PAYMENTS_KEY_SECRET
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def create_intent(self, amount_cents: int, currency: str, idempotency_key: str) -> PaymentIntent:
        resp = _send(
            _payments_cb, "post", f"{self.base_url}/intents", (200, 201, 409), self.timeout,
            json={"amount_cents": amount_cents, "currency": currency},
            headers={"Idempotency-Key": idempotency_key},
        )
        if resp.status_code == 409:
            raise CheckoutConflict("IDEMPOTENCY_CONFLICT")
        data = resp.json()
        return PaymentIntent(
            intent_id=data["intent_id"],
            amount_cents=int(data["amount_cents"]),
            currency=data["currency"],
            status=_intent_status(data, default="created"),
        )

    def _fetch(self, intent_id: str) -> Optional[dict]:
        resp = _send(_payments_cb, "get", f"{self.base_url}/intents/{intent_id}", (200, 404), self.timeout)
        return resp.json() if resp.status_code == 200 else None

    def verify(self, intent_id: str, proof: PaymentProof) -> VerificationResult:
        if not signature_matches(self.key_secret, intent_id, proof.payment_id, proof.signature):
            return VerificationResult(VerificationOutcome.FAILED, reason="SIGNATURE_MISMATCH")
        try:
            data = self._fetch(intent_id)
        except UpstreamUnavailable:
            return VerificationResult(VerificationOutcome.UNKNOWN, reason="GATEWAY_TIMEOUT")
        if data is None:
            return VerificationResult(VerificationOutcome.FAILED, reason="INTENT_MISMATCH")

        status = _intent_status(data)
        if status == IntentStatus.UNKNOWN:
            return VerificationResult(VerificationOutcome.UNKNOWN, reason="GATEWAY_STATUS_UNKNOWN")
        if status == IntentStatus.PAID:
            if data.get("payment_id") != proof.payment_id:
                return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_MISMATCH")
            return VerificationResult(
                VerificationOutcome.VERIFIED, payment_id=proof.payment_id, amount_cents=int(data["amount_cents"])
            )
        if status == IntentStatus.CANCELLED:
            return VerificationResult(VerificationOutcome.CANCELLED)
        if status == IntentStatus.FAILED:
            return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_DECLINED")
        if status == IntentStatus.REFUNDED:
            return VerificationResult(VerificationOutcome.FAILED, reason="PAYMENT_REFUNDED")
        # Signed proof but not captured yet: settle through reconciliation
        return VerificationResult(VerificationOutcome.UNKNOWN, reason="PAYMENT_NOT_CAPTURED")

    def query_status(self, intent_id: str) -> IntentStatus:
        data = self._fetch(intent_id)
        return _intent_status(data) if data else IntentStatus.UNKNOWN

    def refund(self, intent_id: str, amount_cents: int) -> RefundResult:
        resp = _send(
            _payments_cb, "post", f"{self.base_url}/intents/{intent_id}/refund", (200, 404, 409), self.timeout,
            json={"amount_cents": amount_cents},
        )
        data = resp.json()
        if resp.status_code == 200:
            return RefundResult(True, refund_id=data.get("refund_id"))
        return RefundResult(False, failure_reason=data.get("detail", "NOT_REFUNDABLE"))
