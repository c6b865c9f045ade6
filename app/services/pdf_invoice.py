# FILE: app/services/pdf_invoice.py
from __future__ import annotations
from io import BytesIO
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Iterable, Sequence

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from reportlab.lib.units import mm
from reportlab.lib import colors

from app.core.config import settings


def _fmt_date(d: Any) -> str:
    if not d:
        return ""
    if isinstance(d, (datetime, date)):
        return d.strftime("%d-%m-%Y")
    return str(d)


def _fmt_money(x: Any) -> str:
    return f"{Decimal(str(x or '0')):,.2f}"


def _new_canvas() -> tuple[canvas.Canvas, BytesIO]:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    return c, buf


def _draw_header(c: canvas.Canvas, main_title: str, sub_title: str = "") -> float:
    w, h = A4
    x = 18 * mm
    y = h - 20 * mm

    c.setFont("Helvetica-Bold", 14)
    c.drawString(x, y, settings.PROJECT_NAME)

    y -= 7 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, main_title)

    if sub_title:
        y -= 5 * mm
        c.setFont("Helvetica", 10)
        c.drawString(x, y, sub_title)

    y -= 4 * mm
    c.setStrokeColor(colors.grey)
    c.setLineWidth(0.6)
    c.line(x, y, w - x, y)
    y -= 6 * mm
    return y


def _table_header(c: canvas.Canvas, y: float, headers: Sequence[str], col_points: Sequence[float]) -> float:
    x0 = 18 * mm
    c.setFont("Helvetica-Bold", 9)
    for i, htxt in enumerate(headers):
        c.drawString(x0 + sum(col_points[:i]), y, htxt)
    y -= 4 * mm
    c.setLineWidth(0.4)
    c.line(x0, y, x0 + sum(col_points), y)
    return y - 5 * mm


def _table(
    c: canvas.Canvas,
    y: float,
    headers: Sequence[str],
    rows: Iterable[Sequence[str]],
    col_widths_mm: Sequence[float],
) -> float:
    x0 = 18 * mm
    col_points = [w * mm for w in col_widths_mm]

    y = _table_header(c, y, headers, col_points)
    c.setFont("Helvetica", 9)
    for row in rows:
        if y < 25 * mm:
            c.showPage()
            y = _draw_header(c, "Continued")
            y = _table_header(c, y, headers, col_points)
            c.setFont("Helvetica", 9)

        for i, cell in enumerate(row):
            c.drawString(x0 + sum(col_points[:i]), y, (cell or "")[:60])
        y -= 4 * mm

    return y


def build_invoice_pdf(inv) -> BytesIO:
    """
    inv: Invoice ORM with items and payments loaded
    """
    c, buf = _new_canvas()
    y = _draw_header(c, "Invoice", f"No: {inv.invoice_number}")

    x = 18 * mm
    c.setFont("Helvetica", 9)
    lines = [
        f"Invoice Date : {_fmt_date(inv.invoice_date)}",
        f"Due Date     : {_fmt_date(inv.due_date)}",
        f"Bill To      : {inv.buyer_name or ''}",
        f"OP Number    : {inv.op_number or ''}",
        f"Terms        : {inv.payment_terms or ''}",
        f"Status       : {(inv.status or '').upper()}",
    ]
    for ln in lines:
        c.drawString(x, y, ln)
        y -= 4 * mm
    y -= 4 * mm

    rows = [[
        str(i),
        it.description,
        str(it.quantity),
        _fmt_money(it.unit_price),
        _fmt_money(it.total_price),
    ] for i, it in enumerate(inv.items, start=1)]
    y = _table(c, y, ["#", "Description", "Qty", "Unit Price", "Amount"], rows, [10, 90, 20, 30, 30])

    y -= 4 * mm
    c.setFont("Helvetica", 10)
    totals = [
        ("Subtotal", inv.subtotal),
        ("VAT", inv.tax_amount),
        ("Discount", inv.discount_amount),
        ("Total", inv.total_amount),
        ("Paid", inv.amount_paid),
        ("Balance", inv.balance),
    ]
    for label, value in totals:
        if y < 25 * mm:
            c.showPage()
            y = _draw_header(c, "Continued")
        if label in ("Total", "Balance"):
            c.setFont("Helvetica-Bold", 10)
        else:
            c.setFont("Helvetica", 10)
        c.drawString(130 * mm, y, f"{label}:")
        c.drawRightString(198 * mm, y, _fmt_money(value))
        y -= 5 * mm

    payments = list(inv.payments or [])
    if payments:
        y -= 4 * mm
        c.setFont("Helvetica-Bold", 10)
        c.drawString(x, y, "Payments")
        y -= 6 * mm
        prow = [[
            p.payment_reference,
            (p.payment_method or "").upper(),
            _fmt_money(p.amount),
            _fmt_date(p.received_at),
        ] for p in payments]
        _table(c, y, ["Reference", "Method", "Amount", "Date"], prow, [50, 35, 30, 30])

    c.showPage()
    c.save()
    buf.seek(0)
    return buf
