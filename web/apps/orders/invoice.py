"""Invoice data for a persisted order.

The invoice is rendered by the client; this module only assembles the
figures from the frozen order so they always match what was charged.
"""

from dataclasses import asdict, dataclass
from typing import Optional

from .domain import Order


@dataclass(frozen=True)
class InvoiceLine:
    product_id: str
    description: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class InvoiceData:
    invoice_number: str
    order_id: str
    order_number: str
    issued_at: str
    currency: str
    bill_to: dict
    ship_to: dict
    customer: dict
    lines: tuple
    subtotal_cents: int
    discount_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    coupons: tuple = ()

    def as_dict(self) -> dict:
        data = asdict(self)
        data["lines"] = [asdict(ln) for ln in self.lines]
        data["coupons"] = list(self.coupons)
        return data


def _describe(item) -> str:
    extras = [v for v in (item.size, item.color) if v]
    return f"{item.name} ({', '.join(extras)})" if extras else item.name


def build_invoice(order: Order) -> InvoiceData:
    return InvoiceData(
        invoice_number=order.order_number.replace("ORD-", "INV-", 1),
        order_id=str(order.id),
        order_number=order.order_number,
        issued_at=order.created_at.isoformat(),
        currency=order.currency,
        bill_to=order.billing_address,
        ship_to=order.shipping_address,
        customer=order.customer_info,
        lines=tuple(
            InvoiceLine(
                product_id=it.product_id,
                description=_describe(it),
                quantity=it.quantity,
                unit_price_cents=it.unit_price_cents,
                line_total_cents=it.line_total_cents,
            )
            for it in order.items
        ),
        subtotal_cents=order.subtotal_cents,
        discount_cents=order.total_discount_cents,
        shipping_cents=order.shipping_cents,
        tax_cents=order.tax_cents,
        total_cents=order.total_cents,
        payment_method=order.payment_method.value,
        payment_status=order.payment_status.value,
        payment_reference=order.payment_details.get("payment_id") or order.payment_details.get("intent_id"),
        coupons=tuple({"code": c["code"], "discount_cents": c["discount_cents"]} for c in order.applied_coupons),
    )
