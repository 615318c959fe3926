# storefront/domain/pricing.py
"""
Wspolne obliczenia cen dla koszyka (klient) i checkoutu (serwer).
Wszystko na Decimal, zaokraglenie do centow ROUND_HALF_UP.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from storefront.utils.settings import FLAT_SHIPPING_RATE, FREE_SHIPPING_THRESHOLD

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# uproszczone stawki, bez zewnetrznego silnika podatkowego
US_STATE_TAX_RATES = {
    "CA": Decimal("0.0875"),
    "NY": Decimal("0.08"),
    "TX": Decimal("0.0625"),
    "FL": Decimal("0.06"),
}
US_DEFAULT_TAX_RATE = Decimal("0.05")
INTERNATIONAL_VAT_RATE = Decimal("0.20")

STANDARD_SHIPPING = "standard"

SHIPPING_METHODS = [
    {
        "id": STANDARD_SHIPPING,
        "name": "Standard Shipping",
        "description": "5-7 business days",
        "price": FLAT_SHIPPING_RATE,
        "estimated_days": {"min": 5, "max": 7},
    },
    {
        "id": "express",
        "name": "Express Shipping",
        "description": "2-3 business days",
        "price": Decimal("25"),
        "estimated_days": {"min": 2, "max": 3},
    },
    {
        "id": "overnight",
        "name": "Overnight Shipping",
        "description": "Next business day",
        "price": Decimal("40"),
        "estimated_days": {"min": 1, "max": 1},
    },
]


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total: Decimal
    item_count: int


def money(value: Any) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Kwota w centach dla bramki platnosci."""
    return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def line_total(price: Any, quantity: int) -> Decimal:
    return money(money(price) * quantity)


def compute_subtotal(lines: Iterable[Tuple[Any, int]]) -> Decimal:
    return sum((line_total(price, qty) for price, qty in lines), ZERO)


def discount_contribution(
    discount_type: str,
    value: Any,
    subtotal: Decimal,
    minimum_amount: Optional[Any] = None,
) -> Decimal:
    # ponizej minimum kupon nic nie daje
    if minimum_amount is not None and subtotal < money(minimum_amount):
        return ZERO

    if discount_type == "percentage":
        return money(subtotal * Decimal(str(value)) / Decimal("100"))
    if discount_type == "fixed":
        return money(value)
    raise ValueError(f"Unknown discount type {discount_type}")


def total_discount(discounts: Iterable[Any], subtotal: Decimal) -> Decimal:
    """
    Kazdy rabat liczony niezaleznie od pierwotnego subtotal (bez lancuchowania),
    suma obcieta do subtotal.
    """
    amount = sum(
        (
            discount_contribution(d.type, d.value, subtotal, d.minimum_amount)
            for d in discounts
        ),
        ZERO,
    )
    return min(amount, subtotal)


def shipping_for_subtotal(
    subtotal: Decimal,
    threshold: Decimal = FREE_SHIPPING_THRESHOLD,
    flat_rate: Decimal = FLAT_SHIPPING_RATE,
) -> Decimal:
    if subtotal >= threshold:
        return ZERO
    return money(flat_rate)


def calculate_totals(
    lines: Iterable[Tuple[Any, int]],
    discounts: Iterable[Any],
    tax_rate: Decimal,
    free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD,
    flat_shipping_rate: Decimal = FLAT_SHIPPING_RATE,
    shipping_amount: Optional[Decimal] = None,
) -> Totals:
    """
    total = max(0, subtotal - discount) + tax + shipping
    tax = max(0, subtotal - discount) * tax_rate
    shipping_amount podane z zewnatrz (wybrana metoda) nadpisuje prog darmowej wysylki.
    """
    lines = list(lines)
    subtotal = compute_subtotal(lines)
    discount_amount = total_discount(discounts, subtotal)

    if shipping_amount is None:
        shipping_amount = shipping_for_subtotal(subtotal, free_shipping_threshold, flat_shipping_rate)

    taxable = max(ZERO, subtotal - discount_amount)
    tax_amount = money(taxable * Decimal(str(tax_rate)))
    total = max(ZERO, taxable + tax_amount + money(shipping_amount))

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        shipping_amount=money(shipping_amount),
        total=total,
        item_count=sum(qty for _, qty in lines),
    )


def tax_rate_for(country_code: str, state_province: Optional[str] = None) -> Decimal:
    if country_code.upper() == "US":
        return US_STATE_TAX_RATES.get((state_province or "").upper(), US_DEFAULT_TAX_RATE)
    return INTERNATIONAL_VAT_RATE


def shipping_rates(subtotal: Optional[Decimal] = None) -> List[Dict[str, Any]]:
    rates = [dict(method) for method in SHIPPING_METHODS]
    if subtotal is not None and subtotal >= FREE_SHIPPING_THRESHOLD:
        rates[0]["price"] = ZERO
    return rates


def quote_shipping(method_id: str, subtotal: Decimal) -> Dict[str, Any]:
    for rate in shipping_rates(subtotal):
        if rate["id"] == method_id:
            return rate
    raise ValueError(f"Unknown shipping method {method_id}")
