from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, NamedTuple

from app.models.billing import InvoiceStatus

Q2 = Decimal("0.01")


def _d(x: Any) -> Decimal:
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _q2(x: Any) -> Decimal:
    return _d(x).quantize(Q2, rounding=ROUND_HALF_UP)


class InvoiceTotals(NamedTuple):
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    return _q2(_d(quantity) * _d(unit_price))


def compute_totals(items: Iterable[Any], discount: Any, vat_rate: Any) -> InvoiceTotals:
    """
    items: objects or dicts with quantity / unit_price
    total = subtotal + subtotal * vat_rate - discount, each step rounded to cents
    """
    subtotal = Decimal("0")
    for it in items:
        if isinstance(it, dict):
            qty, price = it.get("quantity"), it.get("unit_price")
        else:
            qty, price = getattr(it, "quantity", 0), getattr(it, "unit_price", 0)
        subtotal += line_total(qty, price)

    subtotal = _q2(subtotal)
    tax = _q2(subtotal * _d(vat_rate))
    disc = _q2(discount)
    total = _q2(subtotal + tax - disc)
    return InvoiceTotals(subtotal, tax, disc, total)


def derive_invoice_status(total: Any, paid: Any) -> str:
    total = _q2(total)
    paid = _q2(paid)
    if paid >= total and paid > 0:
        return InvoiceStatus.PAID.value
    if paid > 0:
        return InvoiceStatus.PARTIAL.value
    if total <= 0:
        # zero invoice has nothing owed
        return InvoiceStatus.PAID.value
    return InvoiceStatus.UNPAID.value


def invoice_balance(total: Any, paid: Any) -> Decimal:
    return max(Decimal("0.00"), _q2(_d(total) - _d(paid)))


def aging_bucket(days_overdue: int) -> str:
    d = int(days_overdue or 0)
    if d <= 30:
        return "0-30"
    if d <= 60:
        return "31-60"
    if d <= 90:
        return "61-90"
    return "90+"
