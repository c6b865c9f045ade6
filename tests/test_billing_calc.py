from decimal import Decimal

import pytest

from app.services.billing_calc import (
    aging_bucket,
    compute_totals,
    derive_invoice_status,
    invoice_balance,
    line_total,
)


def test_line_total_rounds_half_up():
    assert line_total(3, "0.335") == Decimal("1.01")
    assert line_total("2.5", "10.00") == Decimal("25.00")


def test_totals_with_vat_and_discount():
    items = [
        {"quantity": 1, "unit_price": "1000.00"},
        {"quantity": 2, "unit_price": "250.00"},
    ]
    t = compute_totals(items, "100", Decimal("0.16"))
    assert t.subtotal == Decimal("1500.00")
    assert t.tax_amount == Decimal("240.00")
    assert t.discount_amount == Decimal("100.00")
    assert t.total_amount == Decimal("1640.00")


def test_totals_accept_objects():
    class Line:
        quantity = Decimal("3")
        unit_price = Decimal("33.33")

    t = compute_totals([Line()], 0, Decimal("0.16"))
    assert t.subtotal == Decimal("99.99")
    assert t.tax_amount == Decimal("16.00")
    assert t.total_amount == Decimal("115.99")


def test_zero_vat_rate():
    t = compute_totals([{"quantity": 1, "unit_price": "500"}], 0, 0)
    assert t.tax_amount == Decimal("0.00")
    assert t.total_amount == Decimal("500.00")


@pytest.mark.parametrize("total,paid,expected", [
    ("1160", "0", "unpaid"),
    ("1160", "500", "partial"),
    ("1160", "1160", "paid"),
    ("1160", "1200", "paid"),
    ("0", "0", "paid"),
])
def test_derive_invoice_status(total, paid, expected):
    assert derive_invoice_status(total, paid) == expected


def test_balance_never_negative():
    assert invoice_balance("100", "40") == Decimal("60.00")
    assert invoice_balance("100", "150") == Decimal("0.00")


@pytest.mark.parametrize("days,bucket", [
    (0, "0-30"),
    (30, "0-30"),
    (31, "31-60"),
    (60, "31-60"),
    (61, "61-90"),
    (90, "61-90"),
    (91, "90+"),
    (400, "90+"),
])
def test_aging_bucket(days, bucket):
    assert aging_bucket(days) == bucket
