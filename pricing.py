# pricing.py
import math
from typing import Any

SHIPPING_FEE = 99
FREE_SHIPPING_THRESHOLD = 1000
TAX_RATE = 0.05  # GST


def _to_float(v: Any, default: float = 0.0) -> float:
    try:
        if v is None or v == "":
            return default
        return float(v)
    except (TypeError, ValueError):
        return default


def round_half_up(value: float) -> int:
    # matches the rounding the storefront client shows (2.5 -> 3)
    return int(math.floor(value + 0.5))


def compute_shipping(subtotal: float) -> int:
    return SHIPPING_FEE if _to_float(subtotal) < FREE_SHIPPING_THRESHOLD else 0


def compute_tax(subtotal: float, discount: float = 0) -> int:
    taxable = max(0.0, _to_float(subtotal) - _to_float(discount))
    return round_half_up(taxable * TAX_RATE)


def compute_totals(subtotal: float, discount: float = 0) -> dict:
    """
    Price breakdown for a cart or an order.
    Shipping is decided on the items subtotal, tax on the discounted subtotal.
    """
    subtotal = max(0.0, _to_float(subtotal))
    discount = max(0.0, _to_float(discount))
    if discount > subtotal:
        discount = subtotal

    shipping = compute_shipping(subtotal)
    tax = compute_tax(subtotal, discount)
    total = subtotal - discount + shipping + tax

    return {
        "items_price": round(subtotal, 2),
        "discount": round(discount, 2),
        "shipping_price": shipping,
        "tax_price": tax,
        "total_amount": round(total, 2),
    }


def items_subtotal(items: list[dict]) -> float:
    return round(
        sum(_to_float(i.get("price")) * int(i.get("qty") or 0) for i in (items or [])),
        2,
    )
