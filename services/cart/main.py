"""Cart service API built with FastAPI.

Owns the authoritative shopping carts and answers catalog lookups for the
checkout. Validation is performed with Pydantic models, persistence is
delegated to ``repo.CartRepo``.
"""

import logging
import time
import uuid
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CartRepo, engine, init_db

app = FastAPI(title="Cart Service")

logger = logging.getLogger("cart")
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


class CartLine(BaseModel):
    product_id: str
    quantity: int
    unit_price_cents: int
    size: Optional[str] = None
    color: Optional[str] = None


class CartOut(BaseModel):
    user_id: str
    items: List[CartLine]


class AddItemRequest(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0, le=100)
    size: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=32)


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price_cents: int = Field(gt=0)
    stock: int = Field(ge=0)
    image: str = ""
    is_active: bool = True


class LookupRequest(BaseModel):
    ids: List[str] = Field(max_length=200)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/carts/{user_id}", response_model=CartOut)
def get_cart(user_id: str):
    """Snapshot of the user's cart; an empty cart has no items."""
    return CartOut(user_id=user_id, items=CartRepo().items(user_id))


@app.post("/carts/{user_id}/items", response_model=CartOut)
def add_item(user_id: str, req: AddItemRequest):
    items = CartRepo().add(user_id, req.product_id, req.quantity, req.size, req.color)
    if items is None:
        raise HTTPException(status_code=422, detail="PRODUCT_UNAVAILABLE")
    return CartOut(user_id=user_id, items=items)


@app.delete("/carts/{user_id}", status_code=204)
def clear_cart(user_id: str):
    removed = CartRepo().clear(user_id)
    logger.info("cart cleared", extra={"user_id": user_id, "lines": removed})
    return Response(status_code=204)


@app.put("/products/{product_id}")
def upsert_product(product_id: str, req: ProductIn):
    return CartRepo().upsert_product(product_id, req.name, req.price_cents, req.stock, req.image, req.is_active)


@app.post("/products/lookup")
def lookup_products(req: LookupRequest):
    return {"products": CartRepo().lookup(req.ids)}


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
