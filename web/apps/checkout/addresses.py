"""Address and customer-info validation.

Runs before any gateway call so no payment intent is ever created for an
order that could not be shipped. Field aliases accepted from older clients
(``street``/``address`` for ``line1``, ``zip_code`` for ``postal_code``)
are normalized here.
"""

import re
from typing import Optional

from .domain import Address, CustomerInfo
from .errors import InvalidAddress, ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_SEPARATORS_RE = re.compile(r"[\s().\-]")

# (min, max) lengths after trimming
LIMITS = {
    "full_name": (2, 100),
    "line1": (5, 200),
    "city": (2, 100),
    "state": (2, 100),
    "country": (2, 100),
    "postal_code": (3, 20),
}


def _pick(raw: dict, *names: str) -> str:
    for name in names:
        value = raw.get(name)
        if value:
            return str(value).strip()
    return ""


def _check_length(field: str, value: str) -> None:
    low, high = LIMITS[field]
    if not value:
        raise InvalidAddress(field, "REQUIRED")
    if not low <= len(value) <= high:
        raise InvalidAddress(field, f"LENGTH_{low}_{high}")


def normalize_phone(value: str) -> str:
    """Strip separators; keep a leading ``+``. Returns "" when invalid."""
    value = (value or "").strip()
    plus = value.startswith("+")
    digits = PHONE_SEPARATORS_RE.sub("", value.lstrip("+"))
    if not digits.isdigit() or not 7 <= len(digits) <= 15:
        return ""
    return ("+" if plus else "") + digits


def validate(raw: Optional[dict], fallback_name: str = "") -> Address:
    """Validate and normalize an address.

    Args:
        raw: Address mapping as received from the client.
        fallback_name: Used for ``full_name`` when the address has none,
            typically the customer's name.

    Returns:
        Address: The normalized address.

    Raises:
        InvalidAddress: Carrying the offending ``field`` and a ``reason``
            code (``REQUIRED``, ``LENGTH_<min>_<max>`` or ``FORMAT``).
    """
    if not raw:
        raise InvalidAddress("address", "REQUIRED")

    values = {
        "full_name": _pick(raw, "full_name", "fullName", "name") or fallback_name.strip(),
        "line1": _pick(raw, "line1", "street", "address", "address_line1"),
        "city": _pick(raw, "city"),
        "state": _pick(raw, "state"),
        "postal_code": _pick(raw, "postal_code", "postalCode", "zip_code", "zipCode"),
        "country": _pick(raw, "country"),
    }
    for field in ("full_name", "line1", "city", "state", "country", "postal_code"):
        _check_length(field, values[field])

    raw_phone = _pick(raw, "phone")
    if not raw_phone:
        raise InvalidAddress("phone", "REQUIRED")
    phone = normalize_phone(raw_phone)
    if not phone:
        raise InvalidAddress("phone", "FORMAT")

    return Address(
        full_name=values["full_name"],
        line1=values["line1"],
        line2=_pick(raw, "line2", "address_line2"),
        city=values["city"],
        state=values["state"],
        postal_code=values["postal_code"],
        country=values["country"],
        phone=phone,
    )


def validate_customer(raw: Optional[dict]) -> CustomerInfo:
    """Validate the customer contact block (name and email required)."""
    raw = raw or {}
    name = _pick(raw, "name", "full_name")
    email = _pick(raw, "email").lower()
    if not name:
        raise ValidationError("INCOMPLETE_CUSTOMER_INFO", {"field": "name", "reason": "REQUIRED"})
    if not email or not EMAIL_RE.match(email):
        raise ValidationError("INCOMPLETE_CUSTOMER_INFO", {"field": "email", "reason": "FORMAT"})
    phone = normalize_phone(_pick(raw, "phone")) if raw.get("phone") else ""
    return CustomerInfo(name=name, email=email, phone=phone)
