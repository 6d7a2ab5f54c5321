"""
Normalisation of commerce-platform checkout payloads.
"""

import json
from dataclasses import dataclass
from typing import Any


def to_float(value: Any) -> float | None:
    """Parse a number leniently; None when it is not finite."""
    try:
        number = float(str(value if value is not None else "").strip())
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def build_customer_name(payload: dict[str, Any]) -> str | None:
    """Customer name from shipping, then billing, then customer record."""
    ship = _first(payload.get("shipping_address"), payload.get("shippingAddress")) or {}
    bill = _first(payload.get("billing_address"), payload.get("billingAddress")) or {}
    customer = payload.get("customer") or {}

    first = _first(
        ship.get("first_name"), ship.get("firstName"),
        bill.get("first_name"), bill.get("firstName"),
        customer.get("first_name"), customer.get("firstName"),
    )
    last = _first(
        ship.get("last_name"), ship.get("lastName"),
        bill.get("last_name"), bill.get("lastName"),
        customer.get("last_name"), customer.get("lastName"),
    )
    full = f"{str(first or '').strip()} {str(last or '').strip()}".strip()
    return full or None


def build_items_json(payload: dict[str, Any]) -> str | None:
    """Serialise line items as a compact JSON list, dropping untitled ones."""
    raw_items = _first(payload.get("line_items"), payload.get("lineItems"), payload.get("items")) or []
    if not isinstance(raw_items, list):
        return None

    items = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        title = _first(item.get("title"), item.get("name"))
        if not title:
            continue
        shop_money = ((item.get("price_set") or {}).get("shop_money") or {})
        quantity = to_float(_first(item.get("quantity"), 1))
        items.append({
            "title": title,
            "quantity": int(quantity) if quantity is not None else 1,
            "sku": item.get("sku"),
            "variantTitle": _first(item.get("variant_title"), item.get("variantTitle")),
            "variantId": _first(item.get("variant_id"), item.get("variantId")),
            "price": _first(item.get("price"), shop_money.get("amount")),
            "currency": _first(shop_money.get("currency_code"), shop_money.get("currencyCode")),
        })
    return json.dumps(items) if items else None


def build_cart_preview(items_json: str | None, limit: int = 6) -> str:
    """Render ``"Title xQty, ..."`` for the first ``limit`` items."""
    if not items_json:
        return ""
    try:
        items = json.loads(items_json)
    except ValueError:
        return ""
    if not isinstance(items, list):
        return ""

    parts = []
    for item in items[:limit]:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title:
            continue
        quantity = to_float(item.get("quantity"))
        parts.append(f"{title} x{int(quantity) if quantity else 1}")
    return ", ".join(parts)


@dataclass(frozen=True)
class CheckoutPayload:
    """Fields extracted from a platform checkout body."""

    checkout_id: str
    value: float
    currency: str
    token: str | None = None
    email: str | None = None
    phone: str | None = None
    customer_name: str | None = None
    items_json: str | None = None
    raw: str | None = None

    @classmethod
    def from_platform(cls, payload: dict[str, Any]) -> "CheckoutPayload | None":
        """Build from a webhook body; None when the id or total is missing."""
        checkout_id = str(payload["id"]) if payload.get("id") is not None else ""
        total_set = ((payload.get("total_price_set") or {}).get("shop_money") or {})
        value = to_float(_first(payload.get("total_price"), payload.get("totalPrice"), total_set.get("amount")))
        if not checkout_id or value is None:
            return None

        currency = str(payload.get("currency") or payload.get("currency_code") or "USD").upper()
        return cls(
            checkout_id=checkout_id,
            value=value,
            currency=currency,
            token=str(payload["token"]) if payload.get("token") else None,
            email=str(payload["email"]) if payload.get("email") else None,
            phone=str(payload["phone"]) if payload.get("phone") else None,
            customer_name=build_customer_name(payload),
            items_json=build_items_json(payload),
            raw=json.dumps(payload, default=str),
        )
