"""Payment gateway simulator built with FastAPI.

Stands in for the external processor in local environments and end-to-end
tests. The merchant side (``/intents``, ``/intents/{id}``, refunds) mirrors
what the web app's ``HttpPaymentGatewayClient`` calls; ``/intents/{id}/pay``
plays the customer completing, failing or abandoning the payment widget and
returns the signed proof the widget would hand back.
"""

import logging
import time
import uuid
from typing import Annotated, Literal

from fastapi import FastAPI, Header, HTTPException, Request, Response
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import GatewayRepo, IdempotencyConflict, InvalidState, engine, init_db, sign

app = FastAPI(title="Payment Gateway Simulator")

Currency = constr(pattern=r"^[A-Z]{3}$")

logger = logging.getLogger("payments")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # Wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class CreateIntentRequest(BaseModel):
    amount_cents: int = Field(gt=0)
    currency: Currency


class IntentOut(BaseModel):
    intent_id: str
    amount_cents: int
    currency: str
    status: str
    payment_id: str | None = None


class PayRequest(BaseModel):
    outcome: Literal["paid", "failed", "cancelled"] = "paid"


class RefundRequest(BaseModel):
    amount_cents: int = Field(gt=0)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/intents", response_model=IntentOut, status_code=201)
def create_intent(
    req: CreateIntentRequest,
    response: Response,
    idempotency_key: Annotated[str, Header(alias="Idempotency-Key", min_length=1, max_length=200)],
):
    """Create a payment intent, at most once per ``Idempotency-Key``.

    A retry with the same key and body answers 200 with the original
    intent; the same key with a different body answers 409.
    """
    try:
        intent, created = GatewayRepo().create_intent(req.amount_cents, req.currency, idempotency_key)
    except IdempotencyConflict:
        raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
    if not created:
        response.status_code = 200
    return intent


@app.get("/intents/{intent_id}", response_model=IntentOut)
def get_intent(intent_id: str):
    intent = GatewayRepo().get(intent_id)
    if intent is None:
        raise HTTPException(status_code=404, detail="INTENT_NOT_FOUND")
    return intent


@app.post("/intents/{intent_id}/pay")
def pay(intent_id: str, req: PayRequest):
    try:
        intent = GatewayRepo().settle(intent_id, req.outcome)
    except InvalidState as e:
        raise HTTPException(status_code=409, detail=f"INTENT_{e.status.upper()}")
    if intent is None:
        raise HTTPException(status_code=404, detail="INTENT_NOT_FOUND")
    logger.info("intent settled", extra={"intent_id": intent_id, "outcome": req.outcome})
    if req.outcome != "paid":
        return {"intent_id": intent_id, "status": intent["status"]}
    return {
        "intent_id": intent_id,
        "status": intent["status"],
        "payment_id": intent["payment_id"],
        "signature": sign(intent_id, intent["payment_id"]),
    }


@app.post("/intents/{intent_id}/refund")
def refund(intent_id: str, req: RefundRequest):
    try:
        result = GatewayRepo().refund(intent_id, req.amount_cents)
    except InvalidState:
        raise HTTPException(status_code=409, detail="NOT_REFUNDABLE")
    if result is None:
        raise HTTPException(status_code=404, detail="INTENT_NOT_FOUND")
    logger.info("intent refunded", extra={"intent_id": intent_id, "refund_id": result["refund_id"]})
    return result


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
